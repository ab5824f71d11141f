DEFAULT_VALIDATION_TTL_DAYS = 7
DEFAULT_TOKEN_BYTES = 32

# gpt-3.5-turbo list prices: $0.50 per 1M prompt tokens, $1.50 per 1M completion tokens
DEFAULT_AI_MODEL = "openai:gpt-3.5-turbo"
DEFAULT_PROMPT_TOKEN_PRICE = 0.50 / 1_000_000
DEFAULT_COMPLETION_TOKEN_PRICE = 1.50 / 1_000_000

# Attempts made to re-apply an instance write that lost an optimistic-lock race
# after its caller already owns the change (validation resolved, instance failed).
WRITE_RETRY_ATTEMPTS = 3
