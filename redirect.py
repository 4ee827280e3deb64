import logging
import secrets
import config

logger = logging.getLogger(config.LOGGER_NAME)


def random_subdomain() -> str:
    """Uniform pick from the fixed word list. secrets.randbelow rejects biased draws, unlike random() % n."""
    return config.SUBDOMAIN_WORDS[secrets.randbelow(len(config.SUBDOMAIN_WORDS))]


def insecure_redirect_url(subdomain: str = None) -> str:
    subdomain = subdomain or random_subdomain()
    return f"http://{subdomain}.{config.REDIRECT_PARENT_DOMAIN}{config.REDIRECT_PATH}"


def should_redirect(classified) -> bool:
    """HTTPS on the root route goes to the insecure demo page. Curl clients just get their IP."""
    return classified.route == config.ROUTE_ROOT and classified.is_secure and not classified.is_curl
