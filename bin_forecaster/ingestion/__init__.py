"""
Ingestion layer — the remote prediction model client and local CSV import.

Submodules:
  prediction_client — async HTTP client for the growth-prediction model
  collection_csv    — CSV import of bins, collection events, and route stops

Endpoint override (.env, gitignored):
  BIN_FORECASTER_MODEL_URL   — base URL of the prediction model service
"""
