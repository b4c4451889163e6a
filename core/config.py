from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    """
    Centralized application settings. Pydantic's BaseSettings will automatically
    load these from environment variables or a .env file.
    """
    # --- LLM and Embedding Models ---
    GENERATION_MODEL: str = Field("gemini-2.5-flash", description="The model used for claim extraction.")
    EMBEDDING_MODEL: str = Field("models/gemini-embedding-001", description="The model used for creating text embeddings.")
    EMBEDDING_DIMENSIONS: int = Field(768, description="Dimensions of the text embeddings.")
    LLM_MAX_OUTPUT_TOKENS: int = Field(16000, description="Upper bound on tokens generated per extraction call.")

    # --- Neo4j Database Credentials ---
    NEO4J_URI: str = Field("bolt://localhost:7687", description="Bolt URI of the Neo4j server.")
    NEO4J_USERNAME: str = Field("neo4j", description="Neo4j user.")
    NEO4J_PASSWORD: str = Field("", description="Neo4j password.")
    NEO4J_DATABASE: str = Field("neo4j", description="Neo4j database name.")

    # --- Google API Key ---
    GOOGLE_API_KEY: str = Field("", description="API key for the Gemini chat and embedding models.")

    # --- Graph Parameters ---
    VECTOR_INDEX_NAME: str = Field("knowledge_embedding", description="Vector index over KnowledgeNode.embedding.")
    DUPLICATE_SIMILARITY_THRESHOLD: float = Field(0.88, description="Cosine similarity above which a node is flagged as a potential duplicate.")
    DUPLICATE_QUERY_TOP_K: int = Field(10, description="Nearest neighbours inspected when checking for duplicates.")

    # --- Retrieval Parameters ---
    RETRIEVAL_DEFAULT_TOP_K: int = Field(10, description="Default number of hits returned by a knowledge query.")
    LOW_CONFIDENCE_SCORE: float = Field(0.5, description="If every hit scores below this, the result carries a low-confidence warning.")
    CONTEXT_BUDGET_CHARS: int = Field(32000, description="Character budget for the serialized retrieval context (~8K tokens).")

    # --- Research Queue ---
    SKIP_PRIORITY_STEP: float = Field(0.1, description="Priority decrement applied when a research prompt is skipped.")
    DEFAULT_PROMPT_PRIORITY: float = Field(5.0, description="Priority given to new research prompts.")
    DEFAULT_MASTER_DOMAIN: str = Field("general", description="Master domain used when none is supplied.")

    # --- Retry Policy for external model calls ---
    RETRY_MAX_ATTEMPTS: int = Field(3, description="Attempts made for a transient embedding/LLM failure.")
    RETRY_INITIAL_DELAY: float = Field(1.0, description="Seconds waited before the first retry; doubles each attempt.")

    # --- Service ---
    LOG_LEVEL: str = Field("INFO", description="Root log level for the JSON logger.")
    CORS_ORIGINS: str = Field("*", description="Comma-separated list of allowed CORS origins.")

    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

settings = Settings()
