class DefaultConfig:
    """Default configuration for the K8s Recommender."""
    # LLM Configuration
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.0
    LLM_MAX_TOKENS: int = 8000

    # Higher LLM Configuration (ranking and enhancement reasoning)
    LLM_HIGHER_PROVIDER: str = "openai"
    LLM_HIGHER_MODEL: str = "gpt-4.1-mini"
    LLM_HIGHER_TEMPERATURE: float = 0.0
    LLM_HIGHER_MAX_TOKENS: int = 15000

    # Logging Configuration
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "k8s_recommender.log"
    LOG_TO_CONSOLE: bool = True
    LOG_TO_FILE: bool = False
    LOG_STRUCTURED_JSON: bool = False

    # Cluster Connection
    KUBECONFIG_PATH: str = ""
    KUBE_CONTEXT: str = ""
    KUBE_IN_CLUSTER: bool = False

    # Discovery
    DISCOVERY_MAX_WORKERS: int = 8
    DISCOVERY_FETCH_TIMEOUT_SECONDS: float = 30.0
    SCHEMA_MAX_DEPTH: int = 10

    # Decision Oracle
    ORACLE_TIMEOUT_SECONDS: float = 120.0
    ORACLE_MAX_ATTEMPTS: int = 3
    ORACLE_BACKOFF_BASE_SECONDS: float = 1.0
    ORACLE_BACKOFF_MAX_SECONDS: float = 8.0
    ORACLE_CATALOG_LIMIT: int = 400

    # Intent and Ranking
    INTENT_MIN_MEANINGFUL_WORDS: int = 2
    RANKING_MAX_SOLUTIONS: int = 5
    RANKING_ORACLE_WEIGHT: float = 1.0
    RANKING_BUILTIN_BONUS: float = 0.0
    RANKING_CUSTOM_RESOURCE_BONUS: float = 0.0
    RANKING_EXTRA_RESOURCE_PENALTY: float = 0.0
    RANKING_MIN_SCORE: float = 0.0

    # Questions
    QUESTION_MAX_REQUIRED_DEPTH: int = 6

    # Sessions
    SESSION_STORE: str = "memory"  # "memory" or "file"
    SESSION_DIR: str = ".k8s-recommender/sessions"
    INDEX_DIR: str = ".k8s-recommender/indexes"
    SESSION_TTL_SECONDS: int = 3600
    SESSION_MAX_ORACLE_FAILURES: int = 3
