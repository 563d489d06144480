#!/usr/bin/env python3
"""
Tests for scripts/run_stars_analysis.py

Tests cover:
- Running analyses against a Parquet directory
- Exit codes for data and configuration errors
"""

import importlib.util
import json
from pathlib import Path

import pytest

SCRIPT = Path(__file__).parent.parent / "scripts" / "run_stars_analysis.py"


@pytest.fixture(scope="module")
def runner():
    spec = importlib.util.spec_from_file_location("run_stars_analysis", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_cut_points_to_file(runner, parquet_dir, tmp_path):
    output = tmp_path / "cutpoints.json"
    exit_code = runner.main(['cut-points', '--data-dir', str(parquet_dir), '-o', str(output)])
    assert exit_code == 0

    data = json.loads(output.read_text())
    assert data['year'] == 2026
    assert {m['measureCode'] for m in data['measures']} == {'C01', 'C02', 'C28', 'D08'}


def test_reward_factor_with_options(runner, parquet_dir, tmp_path):
    output = tmp_path / "reward_factor.json"
    exit_code = runner.main([
        'reward-factor', '--data-dir', str(parquet_dir), '--year', '2025',
        '--rating-type', 'part_c', '--removed', 'C28', '-o', str(output),
    ])
    assert exit_code == 0

    data = json.loads(output.read_text())
    assert data['year'] == 2025
    assert data['ratingType'] == 'part_c'
    assert data['removedMeasureCodes'] == ['C28']


def test_stdout(runner, parquet_dir, capsys):
    assert runner.main(['year-over-year', '--data-dir', str(parquet_dir)]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data['currentYear'] == 2026


def test_missing_data(runner, tmp_path):
    assert runner.main(['risk-opportunity', '--data-dir', str(tmp_path / "missing")]) == 1


def test_invalid_config(runner, parquet_dir, tmp_path):
    config = tmp_path / "engine.yaml"
    config.write_text("proximity: 1.0\n")
    assert runner.main(['risk-opportunity', '--data-dir', str(parquet_dir), '--config', str(config)]) == 2


def test_unknown_analysis(runner):
    with pytest.raises(SystemExit):
        runner.main(['plans'])
