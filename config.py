"""Central configuration for the Review Triage pipeline."""

import json
import logging
import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

from review_triage.errors import ConfigError

load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _env_list(name: str, default: list[str] | None = None) -> list[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default or [])
    return [item.strip() for item in raw.split(",") if item.strip()]


# --- Analyzer Config ---
# Modes: local (lexical heuristic), openai, azure, ollama (OpenAI-compatible endpoints)
ANALYZER_MODE = os.getenv("ANALYZER_MODE", "local").strip().lower()
LLM_API_KEY = os.getenv("LLM_API_KEY", "")
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
LLM_API_VERSION = os.getenv("LLM_API_VERSION", "2024-06-01")  # Azure OpenAI only

if ANALYZER_MODE == "ollama":
    LLM_API_KEY = LLM_API_KEY or "ollama"  # Ollama doesn't require a real key
    LLM_BASE_URL = LLM_BASE_URL or "http://localhost:11434/v1"
    LLM_MODEL = os.getenv("OLLAMA_MODEL", LLM_MODEL)

NEGATIVE_THRESHOLD = _env_float("NEGATIVE_THRESHOLD", -0.2)
RELEVANCE_THRESHOLD = _env_float("RELEVANCE_THRESHOLD", 0.3)
CLASSIFY_MAX_CONCURRENCY = max(1, _env_int("CLASSIFY_MAX_CONCURRENCY", 4))

# --- Email Config ---
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")

_smtp_port = os.getenv("SMTP_PORT")
SMTP_PORT = int(_smtp_port) if _smtp_port else 587

SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
EMAIL_TO = os.getenv("EMAIL_TO", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "")

# --- Slack Config ---
SLACK_WEBHOOK_URL = os.getenv("SLACK_WEBHOOK_URL", "")

# --- Pipeline Config ---
SCRAPE_TIMEOUT_SECONDS = _env_float("SCRAPE_TIMEOUT_SECONDS", 600.0)
SCRAPE_INTERVAL_SECONDS = _env_int("SCRAPE_INTERVAL_SECONDS", 3600)

# Optional JSON file for tables that don't fit in env vars (custom sites, departments, mappings)
CONFIG_FILE = os.getenv("REVIEW_TRIAGE_CONFIG", "")


# --- Scraper Definitions ---
@dataclass
class RateLimitConfig:
    requests_per_minute: int = 30
    pause_between_requests: bool = True
    pause_duration: float = 2.0  # seconds
    pause_after_requests: int = 0  # 0 = pause after every request
    randomize_user_agents: bool = True


@dataclass
class ProxyConfig:
    enabled: bool = False
    url: str = ""
    username: str = ""
    password: str = ""
    rotation: list[str] = field(default_factory=list)

    def proxy_urls(self) -> list[str]:
        if not self.enabled:
            return []
        urls = list(self.rotation) or ([self.url] if self.url else [])
        if self.username and self.password:
            authed = []
            for url in urls:
                scheme, _, rest = url.partition("://")
                if not rest:
                    scheme, rest = "http", url
                authed.append(f"{scheme}://{self.username}:{self.password}@{rest}")
            return authed
        return urls


@dataclass
class TwitterConfig:
    enabled: bool = False
    api_key: str = ""
    api_secret: str = ""
    access_token: str = ""
    access_secret: str = ""
    keywords: list[str] = field(default_factory=list)
    exclude_words: list[str] = field(default_factory=list)
    max_results: int = 100
    language: str = "en"


@dataclass
class TrustpilotConfig:
    enabled: bool = False
    business_id: str = ""
    max_pages: int = 5
    base_url: str = "https://www.trustpilot.com"


@dataclass
class G2Config:
    enabled: bool = False
    product_id: str = ""
    api_key: str = ""
    max_pages: int = 5
    base_url: str = "https://data.g2.com/api/v1"


@dataclass
class AppStoreConfig:
    enabled: bool = False
    app_id: str = ""
    countries: list[str] = field(default_factory=lambda: ["us"])
    max_pages: int = 3


@dataclass
class YouTubeConfig:
    enabled: bool = False
    api_key: str = ""
    keywords: list[str] = field(default_factory=list)
    max_videos: int = 5
    max_comments: int = 20


@dataclass
class CustomSiteConfig:
    """CSS selector set for a review page that has no dedicated adapter."""
    name: str
    url: str
    review_selector: str
    content_selector: str = "p"
    title_selector: str = ""
    author_selector: str = ""
    date_selector: str = ""
    rating_selector: str = ""
    next_page_selector: str = ""
    max_pages: int = 1
    enabled: bool = True


@dataclass
class ScrapersConfig:
    twitter: TwitterConfig = field(default_factory=TwitterConfig)
    trustpilot: TrustpilotConfig = field(default_factory=TrustpilotConfig)
    g2: G2Config = field(default_factory=G2Config)
    appstore: AppStoreConfig = field(default_factory=AppStoreConfig)
    youtube: YouTubeConfig = field(default_factory=YouTubeConfig)
    custom_sites: list[CustomSiteConfig] = field(default_factory=list)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    timeout_seconds: float = 600.0


# --- Analyzer Definitions ---
# keyword -> intent category; every key also counts as a relevance keyword
DEFAULT_INTENT_KEYWORDS: dict[str, str] = {
    "bug": "bug_report",
    "crash": "bug_report",
    "error": "bug_report",
    "broken": "bug_report",
    "freeze": "bug_report",
    "slow": "performance",
    "laggy": "performance",
    "hang": "performance",
    "latency": "performance",
    "feature": "feature_request",
    "missing": "feature_request",
    "wish": "feature_request",
    "delivery": "logistics",
    "shipping": "logistics",
    "payment": "billing",
    "charge": "billing",
    "refund": "billing",
    "license": "billing",
    "support": "customer_service",
    "service": "customer_service",
    "rude": "customer_service",
    "interface": "ui_ux",
    "confusing": "ui_ux",
    "dashboard": "ui_ux",
    "threat": "security",
    "secure": "security",
    "vulnerability": "security",
    "breach": "security",
    "ddos": "security",
}

# product vocabulary -> entity label
DEFAULT_PRODUCT_TERMS: dict[str, str] = {
    "ddi": "core_product",
    "dns": "core_product",
    "dhcp": "core_product",
    "ipam": "core_product",
    "bloxone": "cloud_product",
    "nios": "on_prem_product",
    "threat defense": "security_product",
    "dns firewall": "security_product",
    "netmri": "automation",
    "grid": "infrastructure",
}


@dataclass
class AnalyzerConfig:
    mode: str = "local"
    model: str = "gpt-4o-mini"
    base_url: str = ""
    api_key: str = ""
    api_version: str = "2024-06-01"
    negative_threshold: float = -0.2
    relevance_threshold: float = 0.3
    keywords: list[str] = field(default_factory=list)
    intent_keywords: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_INTENT_KEYWORDS))
    product_terms: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PRODUCT_TERMS))
    max_concurrency: int = 4
    request_timeout: float = 60.0


# --- Router Definitions ---
@dataclass
class DepartmentConfig:
    id: str
    name: str
    contact: str = ""
    categories: list[str] = field(default_factory=list)


@dataclass
class DepartmentMapping:
    category: str
    department: str
    priority: int = 0  # higher wins when two mappings name the same category


DEFAULT_DEPARTMENTS: list[DepartmentConfig] = [
    DepartmentConfig("engineering", "Engineering", "engineering@example.com", ["bug_report", "performance"]),
    DepartmentConfig("security_team", "Security Team", "security@example.com", ["security"]),
    DepartmentConfig("product", "Product Management", "product@example.com", ["feature_request"]),
    DepartmentConfig("design", "UX Design", "design@example.com", ["ui_ux"]),
    DepartmentConfig("finance", "Billing & Licensing", "billing@example.com", ["billing"]),
    DepartmentConfig("logistics", "Fulfilment", "fulfilment@example.com", ["logistics"]),
    DepartmentConfig(
        "support", "Customer Support", "support@example.com", ["customer_service", "general_complaint"]
    ),
]


@dataclass
class RouterConfig:
    departments: list[DepartmentConfig] = field(default_factory=lambda: list(DEFAULT_DEPARTMENTS))
    mappings: list[DepartmentMapping] = field(default_factory=list)
    default_department: str = "support"


# --- Notifier Definitions ---
@dataclass
class NotifierConfig:
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    email_from: str = ""
    email_to: str = ""  # fallback recipient when a department has no address
    department_emails: dict[str, str] = field(default_factory=dict)
    slack_webhook_url: str = ""
    slack_channels: dict[str, str] = field(default_factory=dict)

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_pass)

    @property
    def slack_enabled(self) -> bool:
        return bool(self.slack_webhook_url)


@dataclass
class Settings:
    scrapers: ScrapersConfig = field(default_factory=ScrapersConfig)
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    router: RouterConfig = field(default_factory=RouterConfig)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)
    scrape_interval_seconds: int = 3600


def _load_config_file(path: str) -> dict:
    if not path:
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top-level JSON must be an object")
    logger.info("[CONFIG] Loaded %s", path)
    return data


def _rows(cls, extra: dict, key: str) -> list:
    """Build dataclass rows from a JSON list, naming the table on bad fields."""
    try:
        return [cls(**item) for item in extra.get(key, [])]
    except TypeError as exc:
        raise ConfigError(f"invalid entry in '{key}': {exc}") from exc


def load_settings(config_file: str | None = None) -> Settings:
    """
    Build Settings from environment variables (.env) and the optional JSON file.
    The JSON file may define: custom_sites, departments, mappings, default_department,
    intent_keywords, product_terms, department_emails, slack_channels.
    """
    extra = _load_config_file(CONFIG_FILE if config_file is None else config_file)

    scrapers = ScrapersConfig(
        twitter=TwitterConfig(
            enabled=_env_bool("TWITTER_ENABLED"),
            api_key=os.getenv("TWITTER_API_KEY", ""),
            api_secret=os.getenv("TWITTER_API_SECRET", ""),
            access_token=os.getenv("TWITTER_ACCESS_TOKEN", ""),
            access_secret=os.getenv("TWITTER_ACCESS_SECRET", ""),
            keywords=_env_list("TWITTER_KEYWORDS"),
            exclude_words=_env_list("TWITTER_EXCLUDE_WORDS"),
            max_results=_env_int("TWITTER_MAX_RESULTS", 100),
        ),
        trustpilot=TrustpilotConfig(
            enabled=_env_bool("TRUSTPILOT_ENABLED"),
            business_id=os.getenv("TRUSTPILOT_BUSINESS_ID", ""),
            max_pages=_env_int("TRUSTPILOT_MAX_PAGES", 5),
        ),
        g2=G2Config(
            enabled=_env_bool("G2_ENABLED"),
            product_id=os.getenv("G2_PRODUCT_ID", ""),
            api_key=os.getenv("G2_API_KEY", ""),
            max_pages=_env_int("G2_MAX_PAGES", 5),
        ),
        appstore=AppStoreConfig(
            enabled=_env_bool("APPSTORE_ENABLED"),
            app_id=os.getenv("APPSTORE_APP_ID", ""),
            countries=_env_list("APPSTORE_COUNTRIES", ["us"]),
            max_pages=_env_int("APPSTORE_MAX_PAGES", 3),
        ),
        youtube=YouTubeConfig(
            enabled=_env_bool("YOUTUBE_ENABLED"),
            api_key=os.getenv("YOUTUBE_API_KEY", ""),
            keywords=_env_list("YOUTUBE_KEYWORDS"),
            max_videos=_env_int("YOUTUBE_MAX_VIDEOS", 5),
            max_comments=_env_int("YOUTUBE_MAX_COMMENTS", 20),
        ),
        custom_sites=_rows(CustomSiteConfig, extra, "custom_sites"),
        rate_limits=RateLimitConfig(
            requests_per_minute=_env_int("RATE_LIMIT_RPM", 30),
            pause_between_requests=_env_bool("PAUSE_BETWEEN_REQUESTS", True),
            pause_duration=_env_float("PAUSE_DURATION_SECONDS", 2.0),
            pause_after_requests=_env_int("PAUSE_AFTER_REQUESTS", 0),
            randomize_user_agents=_env_bool("RANDOMIZE_USER_AGENTS", True),
        ),
        proxy=ProxyConfig(
            enabled=_env_bool("PROXY_ENABLED"),
            url=os.getenv("PROXY_URL", ""),
            username=os.getenv("PROXY_USERNAME", ""),
            password=os.getenv("PROXY_PASSWORD", ""),
            rotation=_env_list("PROXY_ROTATION"),
        ),
        timeout_seconds=SCRAPE_TIMEOUT_SECONDS,
    )

    analyzer = AnalyzerConfig(
        mode=ANALYZER_MODE or "local",
        model=LLM_MODEL,
        base_url=LLM_BASE_URL,
        api_key=LLM_API_KEY,
        api_version=LLM_API_VERSION,
        negative_threshold=NEGATIVE_THRESHOLD,
        relevance_threshold=RELEVANCE_THRESHOLD,
        keywords=_env_list("ANALYZER_KEYWORDS"),
        intent_keywords=extra.get("intent_keywords", dict(DEFAULT_INTENT_KEYWORDS)),
        product_terms=extra.get("product_terms", dict(DEFAULT_PRODUCT_TERMS)),
        max_concurrency=CLASSIFY_MAX_CONCURRENCY,
    )

    departments = _rows(DepartmentConfig, extra, "departments")
    router = RouterConfig(
        departments=departments or list(DEFAULT_DEPARTMENTS),
        mappings=_rows(DepartmentMapping, extra, "mappings"),
        default_department=extra.get("default_department", os.getenv("DEFAULT_DEPARTMENT", "support")),
    )

    notifier = NotifierConfig(
        smtp_host=SMTP_HOST,
        smtp_port=SMTP_PORT,
        smtp_user=SMTP_USER,
        smtp_pass=SMTP_PASS,
        email_from=EMAIL_FROM,
        email_to=EMAIL_TO,
        department_emails=extra.get("department_emails", {}),
        slack_webhook_url=SLACK_WEBHOOK_URL,
        slack_channels=extra.get("slack_channels", {}),
    )

    return Settings(
        scrapers=scrapers,
        analyzer=analyzer,
        router=router,
        notifier=notifier,
        scrape_interval_seconds=SCRAPE_INTERVAL_SECONDS,
    )


REMOTE_ANALYZER_MODES = ("openai", "azure", "ollama")
# Adapter names; stats are keyed by name so custom sites must not reuse one
BUILTIN_SOURCE_NAMES = ("Twitter", "Trustpilot", "G2", "App Store", "YouTube")


def validate_config(settings: Settings) -> tuple[bool, list[str]]:
    """
    验证配置 (Validate configuration).
    Returns (ok, errors); the CLI refuses to start when ok is False.
    """
    errors: list[str] = []
    scrapers = settings.scrapers

    if scrapers.twitter.enabled:
        creds = (
            scrapers.twitter.api_key,
            scrapers.twitter.api_secret,
            scrapers.twitter.access_token,
            scrapers.twitter.access_secret,
        )
        if not all(creds):
            errors.append("Twitter enabled but OAuth credentials are incomplete")
        if not scrapers.twitter.keywords:
            errors.append("Twitter enabled but TWITTER_KEYWORDS is empty")
    if scrapers.trustpilot.enabled and not scrapers.trustpilot.business_id:
        errors.append("Trustpilot enabled but TRUSTPILOT_BUSINESS_ID is not set")
    if scrapers.g2.enabled and not scrapers.g2.product_id:
        errors.append("G2 enabled but G2_PRODUCT_ID is not set")
    if scrapers.appstore.enabled and not scrapers.appstore.app_id:
        errors.append("App Store enabled but APPSTORE_APP_ID is not set")
    if scrapers.youtube.enabled and not scrapers.youtube.api_key:
        errors.append("YouTube enabled but YOUTUBE_API_KEY is not set")

    seen_sources = set(BUILTIN_SOURCE_NAMES)
    for site in scrapers.custom_sites:
        if not site.name:
            errors.append(f"Custom site {site.url} has no name")
        elif site.name in seen_sources:
            errors.append(f"Custom site name '{site.name}' is already used by another scraper")
        seen_sources.add(site.name)

    any_enabled = any(
        (
            scrapers.twitter.enabled,
            scrapers.trustpilot.enabled,
            scrapers.g2.enabled,
            scrapers.appstore.enabled,
            scrapers.youtube.enabled,
            any(site.enabled for site in scrapers.custom_sites),
        )
    )
    if not any_enabled:
        errors.append("No scraper is enabled")

    analyzer = settings.analyzer
    if analyzer.mode in REMOTE_ANALYZER_MODES and not analyzer.api_key:
        errors.append(f"Analyzer mode '{analyzer.mode}' requires LLM_API_KEY")
    if analyzer.mode == "azure" and not analyzer.base_url:
        errors.append("Analyzer mode 'azure' requires LLM_BASE_URL")
    if not -1.0 <= analyzer.negative_threshold <= 1.0:
        errors.append("NEGATIVE_THRESHOLD must be within [-1, 1]")
    if not 0.0 <= analyzer.relevance_threshold <= 1.0:
        errors.append("RELEVANCE_THRESHOLD must be within [0, 1]")

    department_ids = {dept.id for dept in settings.router.departments}
    for mapping in settings.router.mappings:
        if mapping.department not in department_ids:
            errors.append(f"Mapping '{mapping.category}' points to unknown department '{mapping.department}'")

    return (not errors, errors)
