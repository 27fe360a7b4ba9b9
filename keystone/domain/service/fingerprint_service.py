"""Device fingerprinting domain service.

Characterizes the device behind a request from its headers and address.
Everything here is pure and deterministic; unknown or missing signals lower
confidence instead of raising.
"""

import hashlib
import ipaddress
import re
from datetime import datetime, timedelta

from keystone.domain.model import TrustedDevice
from keystone.domain.model.common import utc_now
from keystone.domain.value import DeviceFingerprint, RequestSignals, RiskLevel, Suspicion
from keystone.domain.value.common import ValueObject

from .base import Service

# Header order matters: both hashes join present values with "|"
DEVICE_ID_HEADERS = ("user-agent", "accept", "accept-language", "accept-encoding")
FINGERPRINT_HEADERS = (
    "user-agent",
    "accept",
    "accept-language",
    "accept-encoding",
    "connection",
    "upgrade-insecure-requests",
    "sec-fetch-site",
    "sec-fetch-mode",
    "sec-fetch-user",
    "sec-fetch-dest",
)
FINGERPRINT_TRAILING_HEADERS = (
    "sec-ch-viewport-width",
    "sec-ch-viewport-height",
    "sec-ch-ua-platform",
    "sec-ch-ua-mobile",
)

CLIENT_IP_HEADERS = (
    "x-real-ip",
    "cf-connecting-ip",
    "x-client-ip",
    "x-forwarded",
    "x-cluster-client-ip",
)
DEFAULT_IP = "127.0.0.1"

BOT_PATTERN = re.compile(
    r"bot|crawler|spider|scraper|automated|selenium|phantomjs|headless", re.I
)
AUTOMATION_SIGNATURES = (
    "curl",
    "wget",
    "postman",
    "insomnia",
    "httpie",
    "python-requests",
    "python-urllib",
    "go-http-client",
    "java/",
    "node-fetch",
    "axios",
    "http.rb",
)
ANOMALY_HEADERS = ("x-vpn-client", "x-proxy-id", "x-forwarded-proto")
DATACENTER_PREFIXES = ("54.", "52.", "34.", "35.", "104.", "199.", "162.")

# Suspicion weights
BOT_WEIGHT = 30
MISSING_USER_AGENT_WEIGHT = 20
MISSING_ACCEPT_WEIGHT = 15
DATACENTER_WEIGHT = 25
VPN_WEIGHT = 20
AUTOMATION_WEIGHT = 35

MEDIUM_RISK_THRESHOLD = 25
HIGH_RISK_THRESHOLD = 50

# Similarity weights for compare()
FINGERPRINT_MATCH_WEIGHT = 50
BROWSER_MATCH_WEIGHT = 15
OS_MATCH_WEIGHT = 15
DEVICE_TYPE_MATCH_WEIGHT = 10
LOCATION_MATCH_WEIGHT = 10
SIMILAR_THRESHOLD = 70
LIKELY_SAME_THRESHOLD = 90

SUSPICIOUS_CHANGE_THRESHOLD = 40


class DeviceComparison(ValueObject):
    """Similarity between two device characterizations."""

    similarity: int
    matches: list[str]
    is_similar: bool
    is_likely_same: bool


class DeviceChangeAssessment(ValueObject):
    """Whether moving from one device to another looks suspicious."""

    is_suspicious: bool
    score: int
    reasons: list[str]


def browser_name(user_agent: str | None) -> str:
    """Best-effort browser family from a user agent string."""
    ua = (user_agent or "").lower()
    if not ua:
        return "unknown"
    # Order matters: Edge and Opera also advertise Chrome, Chrome advertises Safari
    for marker, name in (
        ("edg/", "edge"),
        ("opr/", "opera"),
        ("firefox/", "firefox"),
        ("chrome/", "chrome"),
        ("safari/", "safari"),
    ):
        if marker in ua:
            return name
    return "other"


def os_name(user_agent: str | None) -> str:
    """Best-effort operating system family from a user agent string."""
    ua = (user_agent or "").lower()
    if not ua:
        return "unknown"
    for marker, name in (
        ("windows", "windows"),
        ("iphone", "ios"),
        ("ipad", "ios"),
        ("android", "android"),
        ("mac os", "macos"),
        ("linux", "linux"),
    ):
        if marker in ua:
            return name
    return "other"


class FingerprintService(Service):
    """Domain service that characterizes devices and scores their risk."""

    def characterize(self, signals: RequestSignals) -> DeviceFingerprint:
        """Derive device id, fingerprint hash and suspicion for a request.

        Args:
            signals: Request headers and remote address

        Returns:
            Device fingerprint
        """
        ip = self.client_ip(signals)
        user_agent = signals.header("user-agent")
        return DeviceFingerprint(
            device_id=self.device_id(signals, ip),
            fingerprint_hash=self.fingerprint_hash(signals, ip),
            client_ip=ip,
            user_agent=user_agent,
            device_type=self.device_type(user_agent),
            location_summary=self.location_summary(ip),
            suspicion=self.assess(signals, ip),
        )

    def client_ip(self, signals: RequestSignals) -> str:
        """Resolve the client address through common proxy headers."""
        ip = None
        forwarded_for = signals.header("x-forwarded-for")
        if forwarded_for:
            ip = forwarded_for.split(",")[0].strip() or None
        if not ip:
            ip = next(
                (signals.header(h) for h in CLIENT_IP_HEADERS if signals.header(h)),
                None,
            )
        ip = ip or signals.remote_addr or DEFAULT_IP
        if ip.startswith("::ffff:"):
            ip = ip[len("::ffff:") :]
        return ip

    def device_id(self, signals: RequestSignals, ip: str) -> str:
        """Short stable device id: first 16 hex chars of a sha256."""
        factors = [signals.header(h) for h in DEVICE_ID_HEADERS] + [ip]
        return _sha256("|".join(f for f in factors if f))[:16]

    def fingerprint_hash(self, signals: RequestSignals, ip: str) -> str:
        """Full sha256 over the wider header set."""
        factors = (
            [signals.header(h) for h in FINGERPRINT_HEADERS]
            + [ip]
            + [signals.header(h) for h in FINGERPRINT_TRAILING_HEADERS]
        )
        return _sha256("|".join(f for f in factors if f))

    def assess(self, signals: RequestSignals, ip: str) -> Suspicion:
        """Score how automated or anonymized a request looks."""
        user_agent = signals.header("user-agent") or ""
        score = 0
        flags: list[str] = []

        if BOT_PATTERN.search(user_agent):
            score += BOT_WEIGHT
            flags.append("potential_bot")
        if not signals.header("user-agent"):
            score += MISSING_USER_AGENT_WEIGHT
            flags.append("missing_user_agent")
        if not signals.header("accept"):
            score += MISSING_ACCEPT_WEIGHT
            flags.append("missing_accept_header")
        if ip.startswith(DATACENTER_PREFIXES):
            score += DATACENTER_WEIGHT
            flags.append("datacenter_ip")
        if any(signals.header(h) for h in ANOMALY_HEADERS):
            score += VPN_WEIGHT
            flags.append("potential_vpn")
        lowered = user_agent.lower()
        if any(sig in lowered for sig in AUTOMATION_SIGNATURES):
            score += AUTOMATION_WEIGHT
            flags.append("automated_tool")

        return Suspicion(score=score, flags=flags, risk_level=risk_level_for(score))

    def device_type(self, user_agent: str | None) -> str:
        ua = (user_agent or "").lower()
        if not ua:
            return "unknown"
        if re.search(r"mobile|android|iphone|ipad|ipod|blackberry|windows phone", ua):
            return "tablet" if re.search(r"ipad|tablet", ua) else "mobile"
        if re.search(r"smart-tv|smarttv|googletv|appletv|hbbtv|pov_tv|netcast\.tv", ua):
            return "smarttv"
        if re.search(r"bot|crawler|spider|scraper", ua):
            return "bot"
        return "desktop"

    def location_summary(self, ip: str) -> str:
        """Coarse location; private and loopback addresses are "Local"."""
        if ip == "localhost":
            return "Local"
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return "Unknown"
        if address.is_loopback or address.is_private:
            return "Local"
        return "Unknown"

    def compare(
        self, first: DeviceFingerprint, second: DeviceFingerprint
    ) -> DeviceComparison:
        """Score how similar two device characterizations are (0-100)."""
        similarity = 0
        matches: list[str] = []

        if first.fingerprint_hash == second.fingerprint_hash:
            similarity += FINGERPRINT_MATCH_WEIGHT
            matches.append("fingerprint")
        if browser_name(first.user_agent) == browser_name(second.user_agent):
            similarity += BROWSER_MATCH_WEIGHT
            matches.append("browser")
        if os_name(first.user_agent) == os_name(second.user_agent):
            similarity += OS_MATCH_WEIGHT
            matches.append("os")
        if first.device_type == second.device_type:
            similarity += DEVICE_TYPE_MATCH_WEIGHT
            matches.append("device_type")
        if first.location_summary == second.location_summary:
            similarity += LOCATION_MATCH_WEIGHT
            matches.append("location")

        return DeviceComparison(
            similarity=similarity,
            matches=matches,
            is_similar=similarity >= SIMILAR_THRESHOLD,
            is_likely_same=similarity >= LIKELY_SAME_THRESHOLD,
        )

    def assess_change(
        self,
        previous: TrustedDevice,
        current: DeviceFingerprint,
        last_login_at: datetime | None,
        now: datetime | None = None,
    ) -> DeviceChangeAssessment:
        """Judge a login from ``current`` right after one from ``previous``."""
        now = now or utc_now()
        score = 0
        reasons: list[str] = []

        if previous.fingerprint_hash != current.fingerprint_hash:
            score += 20
            reasons.append("different_fingerprint")
        if previous.location_summary != current.location_summary:
            score += 30
            reasons.append("different_location")
        if browser_name(previous.user_agent) != browser_name(current.user_agent):
            score += 15
            reasons.append("different_browser")
        if os_name(previous.user_agent) != os_name(current.user_agent):
            score += 15
            reasons.append("different_os")
        if last_login_at and now - last_login_at < timedelta(hours=1):
            score += 20
            reasons.append("rapid_device_change")

        return DeviceChangeAssessment(
            is_suspicious=score >= SUSPICIOUS_CHANGE_THRESHOLD,
            score=score,
            reasons=reasons,
        )


def risk_level_for(score: int) -> RiskLevel:
    if score >= HIGH_RISK_THRESHOLD:
        return RiskLevel.HIGH
    if score >= MEDIUM_RISK_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
