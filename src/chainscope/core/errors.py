class ChainscopeError(Exception):
    pass


class ConfigError(ChainscopeError):
    pass


class ProviderError(ChainscopeError):
    pass


class RateLimitError(ProviderError):
    pass


class CrawlFailedError(ChainscopeError):
    """Raised when not a single provider fetch succeeded during a crawl."""

    def __init__(self, message: str, failures: int = 0) -> None:
        super().__init__(message)
        self.failures = failures


class LoaderError(ChainscopeError):
    pass
