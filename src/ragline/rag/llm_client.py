"""LiteLLM client wrapper with retry, timeouts and API key validation.

Every completion and embedding call made by ragline routes through this module.
LiteLLM's built-in retry is used (num_retries=3, exponential backoff).
API key presence is validated by the CLI before any provider call is made.
"""

from __future__ import annotations

import os

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_env_var(model: str) -> str | None:
    """Return the env var holding the API key for *model*'s provider, if any."""
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    return _PROVIDER_ENV.get(provider)


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    env_var = provider_env_var(model)
    if env_var is None:
        return  # No key required (e.g. ollama)

    if not os.getenv(env_var):
        provider = model.split("/")[0].lower() if "/" in model else "openai"
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 100,
    temperature: float = 0.3,
    timeout: float | None = None,
    num_retries: int = 3,
) -> str:
    """Call litellm.completion() with retry/backoff. Returns content string.

    Args:
        model: LiteLLM model string (provider/model format).
        messages: OpenAI-style message list.
        max_tokens: Maximum output tokens.
        temperature: Sampling temperature.
        timeout: Per-request timeout in seconds (None = provider default).
        num_retries: Number of retries on transient errors (exponential backoff).

    Returns:
        The stripped text content of the first choice.

    Raises:
        litellm.exceptions.APIError: On persistent API failure after retries.
    """
    kwargs: dict = {}
    if timeout is not None:
        kwargs["timeout"] = timeout
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
        **kwargs,
    )
    return (response.choices[0].message.content or "").strip()


def embed_batch(model: str, texts: list[str], num_retries: int = 3) -> list[list[float]]:
    """Call litellm.embedding() for several inputs in one request.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        texts: Texts to embed.
        num_retries: Number of retries on transient errors.

    Returns:
        One vector per input, in input order.
    """
    response = litellm.embedding(model=model, input=texts, num_retries=num_retries)
    return [list(d["embedding"]) for d in response.data]
