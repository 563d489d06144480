# MA Stars Analytics - API
#
# FastAPI app (api.main:app) and its service layer (api.services).
