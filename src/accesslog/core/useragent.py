from dataclasses import dataclass

BOT_KEYWORDS = (
    "bot",
    "crawler",
    "spider",
    "scraper",
    "googlebot",
    "bingbot",
    "yandexbot",
    "baiduspider",
    "duckduckbot",
    "facebookexternalhit",
    "twitterbot",
)

MOBILE_KEYWORDS = (
    "mobile",
    "android",
    "iphone",
    "ipad",
    "ipod",
    "blackberry",
    "windows phone",
)

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class UserAgentInfo:
    device_type: str
    browser: str
    os: str


def is_bot(ua: str) -> bool:
    lowered = ua.lower()
    return any(k in lowered for k in BOT_KEYWORDS)


def device_type(ua: str) -> str:
    lowered = ua.lower()
    if is_bot(ua):
        return "bot"
    if "ipad" in lowered:
        return "tablet"
    if any(k in lowered for k in MOBILE_KEYWORDS):
        return "mobile"
    return "desktop"


def browser(ua: str) -> str:
    lowered = ua.lower()
    # Edge advertises Chrome and Chrome advertises Safari
    if "edg/" in lowered:
        return "Edge"
    if "chrome" in lowered:
        return "Chrome"
    if "firefox" in lowered:
        return "Firefox"
    if "safari" in lowered:
        return "Safari"
    if "opera" in lowered:
        return "Opera"
    return UNKNOWN


def operating_system(ua: str) -> str:
    lowered = ua.lower()
    if "windows" in lowered:
        return "Windows"
    if "iphone" in lowered or "ipad" in lowered or "ipod" in lowered:
        return "iOS"
    if "macintosh" in lowered or "mac os" in lowered:
        return "macOS"
    if "android" in lowered:
        return "Android"
    if "linux" in lowered:
        return "Linux"
    return UNKNOWN


def parse_user_agent(ua: str | None) -> UserAgentInfo:
    ua = ua or ""
    if not ua.strip():
        return UserAgentInfo(device_type="", browser="", os="")
    return UserAgentInfo(device_type=device_type(ua), browser=browser(ua), os=operating_system(ua))
