"""Configuration constants and re-exports for tooldex."""

import os
from pathlib import Path
from tooldex.config.loader import load_config, _get_config_dir


# --- Initialize Configuration ---
_CONFIG = load_config()

# --- Expose Constants ---

# General
_gen = _CONFIG["general"]
LOG_LEVEL = _gen.get("log_level", "INFO")
LOG_FILE = _gen.get("log_file", "~/.config/tooldex/logs/tooldex.log")

# Database
_db_env_var_name = _gen.get("db_path_env_var", "TOOLDEX_DB_PATH")
_env_path = os.environ.get(_db_env_var_name)

if _env_path:
    DB_PATH = Path(_env_path)
elif "db_path" in _gen and _gen["db_path"]:
    DB_PATH = Path(_gen["db_path"]).expanduser()
else:
    DB_PATH = _get_config_dir() / "tools.db"

# Embedding
_embedding = _CONFIG.get("embedding", {})
EMBEDDING_BACKEND = _embedding.get("backend", "sentence_transformers")
EMBEDDING_MODEL = _embedding.get("model", "all-MiniLM-L6-v2")
EMBEDDING_BATCH_SIZE = _embedding.get("batch_size", 32)
EMBEDDING_DEVICE = _embedding.get("device", "cpu")
EMBEDDING_NORMALIZE = _embedding.get("normalize", True)
EMBEDDING_LOCAL_FILES_ONLY = _embedding.get("local_files_only", False)

_embedding_api = _embedding.get("api", {})
EMBEDDING_API_URL = _embedding_api.get("url", "https://api.openai.com/v1")
EMBEDDING_API_MODEL = _embedding_api.get("model", "text-embedding-3-small")
EMBEDDING_API_KEY_ENV = _embedding_api.get("api_key_env", "TOOLDEX_EMBEDDING_API_KEY")
EMBEDDING_API_DIMENSIONS = _embedding_api.get("dimensions", 0)
EMBEDDING_API_TIMEOUT = _embedding_api.get("timeout", 30)
EMBEDDING_API_MAX_RETRIES = _embedding_api.get("max_retries", 3)
EMBEDDING_API_INITIAL_BACKOFF = _embedding_api.get("initial_backoff", 1)
EMBEDDING_API_MAX_BACKOFF = _embedding_api.get("max_backoff", 30)

# Index & retrieval
_index = _CONFIG.get("index", {})
INDEX_TOP_K = _index.get("top_k", 5)
INDEX_MIN_SIMILARITY = _index.get("min_similarity", 0.1)
INDEX_DUPLICATE_THRESHOLD = _index.get("duplicate_threshold", 0.96)
INDEX_DUPLICATE_CANDIDATE_THRESHOLD = _index.get("duplicate_candidate_threshold", 0.7)
INDEX_DUPLICATE_CANDIDATE_K = _index.get("duplicate_candidate_k", 10)
INDEX_CONCURRENCY = _index.get("concurrency", 4)
INDEX_AUTO_INDEX = _index.get("auto_index", True)
INDEX_BEST_TOOL_MIN_SIMILARITY = _index.get("best_tool_min_similarity", 0.3)
SESSION_ID_LENGTH = _index.get("session_id_length", 6)

# Servers & groups
SERVERS = _CONFIG.get("servers", {})
GROUPS = _CONFIG.get("groups", {})
DEFAULT_TOOL_TIMEOUT = _gen.get("tool_timeout", 30)
