"""Pipeline-wide constants."""

# Confidence engine
DEFAULT_CONFIDENCE_WEIGHTS = {
    "provider_confidence": 0.35,
    "similarity_agreement": 0.30,
    "evidence_count": 0.20,
    "output_quality": 0.15,
}

CONFIDENCE_THRESHOLDS = {
    "high": 0.75,
    "medium": 0.50,
    "low": 0.30,
}

NEUTRAL_CONFIDENCE = 0.5
DEFAULT_MAX_EVIDENCE = 10
WEIGHT_SUM_TOLERANCE = 0.01

# Provider health
DEGRADED_FAILURE_THRESHOLD = 5

# Call layer
CHARS_PER_TOKEN = 4
DEFAULT_MAX_PROMPT_TOKENS = 16000
DEFAULT_PROVIDER_TIMEOUT_S = 60.0

# Convergence
DEFAULT_TOP_K = 10
DEFAULT_CONVERGENCE_THRESHOLD = 0.70

# Orchestration
DEFAULT_MAX_ITERATIONS = 4
DEFAULT_MICRO_CONCURRENCY = 10
DEFAULT_JOB_TIMEOUT_S = 300.0
DEFAULT_INTER_ITERATION_DELAY_S = 5.0
DEFAULT_MIN_MICRO_SUCCESS_FRACTION = 0.5
QUEUE_DEGRADED_FAILED_JOBS = 50
STATUS_LOG_LIMIT = 10
# Finished runs whose queues stay in memory for queue stats and health
FINISHED_RUN_RETENTION = 100
FINAL_REPORT_TOP_GAPS = 10

# Context store
MAX_ARTIFACT_BYTES = 10 * 1024 * 1024
SUMMARY_CHARS = 200

# Vocabulary used by the heuristics of the confidence engine and tier workers
RESEARCH_KEYWORDS = [
    "research", "study", "analysis", "findings", "results", "conclusion",
    "method", "evidence", "data", "significant",
]

NOVELTY_KEYWORDS = [
    "unexplored", "novel", "new", "emerging", "frontier", "innovative", "untapped",
]

IMPACT_KEYWORDS = [
    "critical", "important", "significant", "fundamental", "breakthrough",
    "transformative", "widespread",
]

FEASIBILITY_KEYWORDS = ["data available", "existing", "established", "available"]

COMPLEXITY_KEYWORDS = [
    "complex", "difficult", "challenging", "requires extensive", "long-term",
]

METHODOLOGY_KEYWORDS = [
    "survey", "experiment", "simulation", "benchmark", "case study",
    "meta-analysis", "regression", "neural", "transformer", "qualitative",
    "quantitative", "longitudinal", "randomized",
]

STOPWORDS = {
    "about", "above", "after", "again", "against", "among", "because", "before",
    "being", "below", "between", "both", "could", "doing", "during", "each",
    "further", "having", "however", "into", "itself", "more", "most", "other",
    "ought", "over", "same", "should", "some", "such", "than", "that", "their",
    "theirs", "them", "themselves", "then", "there", "these", "they", "this",
    "those", "through", "under", "until", "very", "were", "what", "when",
    "where", "which", "while", "whom", "with", "would", "your", "yours",
    "paper", "work", "using", "based", "approach", "propose", "proposed",
    "results", "show", "shows", "also", "within", "without", "across",
}
