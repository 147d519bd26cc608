"""
Centralized constants for the ingestion batch engine.
All tunables of the slice/run/batch loops live here.
"""

# ===========================================
# SLICE EXECUTION
# ===========================================
INGEST_SLICE_SIZE = 4                 # pages per analyze-pdf call
INGEST_HARD_TIMEOUT_MS = 180000       # 3 minutes per slice, upstream effects unknown after that
DIAGNOSTIC_MAX_CHARS = 200            # truncation for error bodies in logs/exceptions
RETRYABLE_HTTP_STATUSES = (429, 500, 502, 503, 504, 529)

# ===========================================
# RUN CONTROLLER
# ===========================================
INGEST_INTER_SLICE_DELAY_MS = 1000    # pause between slices of one target
INGEST_MAX_RETRIES = 3
INGEST_RETRY_BACKOFF_BASE_MS = 3000   # attempt * base
INGEST_EXHAUSTED_RETRY_POLICY = "abort"

# ===========================================
# BATCH ORCHESTRATOR
# ===========================================
INGEST_INTER_TARGET_DELAY_MS = 3000   # pause between documents/tables

# ===========================================
# WORKFLOWS
# ===========================================
EXTRACTION_ENDPOINT = "analyze-pdf"

REINGEST_ENDPOINT = "ingest-legal-doc"
REINGEST_SLICE_SIZE = 1               # one page per call, heavy contextual chunking
REINGEST_INTER_SLICE_DELAY_MS = 2500
REINGEST_INTER_TARGET_DELAY_MS = 3000
REINGEST_CATEGORIES = ("law",)
REINGEST_COUNTRY_CODE = "MA"

EMBEDDING_ENDPOINT = "generate-embeddings"
EMBEDDING_BATCH_LIMIT = 100           # rows per call
EMBEDDING_INTER_SLICE_DELAY_MS = 2000
EMBEDDING_INTER_TARGET_DELAY_MS = 1000
EMBEDDING_TABLES = {
    "legal_chunks": "Segments légaux",
    "country_tariffs": "Tarifs nationaux",
    "hs_codes": "Codes SH",
    "tariff_notes": "Notes tarifaires",
    "knowledge_documents": "Documents de veille",
}

# ===========================================
# RUN STORE
# ===========================================
RUN_STORE_FILE = 'data/runs/ingestion_runs.db'
RUN_HISTORY_DAYS = 30                 # cleanup horizon for retired runs

# ===========================================
# LOGGING
# ===========================================
LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILE = 'logs/ingest.log'
LOG_MAX_SIZE_MB = 10
LOG_BACKUP_COUNT = 5
