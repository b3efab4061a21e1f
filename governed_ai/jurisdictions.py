import logging
import yaml
from typing import Any, Dict, Optional

from .models import FairChanceRules, JurisdictionRules

logger = logging.getLogger(__name__)

NYC_STRICT_RULES = JurisdictionRules(
    id="nyc",
    name="New York City",
    broker_fee_tenant_prohibited=True,
    max_security_deposit_months=1,
    fair_chance=FairChanceRules(
        enabled=True,
        prohibited_before_conditional_offer=["criminal_history", "credit", "eviction"],
    ),
)

CA_STANDARD_RULES = JurisdictionRules(
    id="ca-standard",
    name="California",
    broker_fee_tenant_prohibited=False,
    max_security_deposit_months=2,
    fair_chance=FairChanceRules(
        enabled=True,
        prohibited_before_conditional_offer=["criminal_history"],
    ),
)

US_STANDARD_RULES = JurisdictionRules(
    id="us-standard",
    name="United States (standard)",
    broker_fee_tenant_prohibited=False,
    max_security_deposit_months=2,
    fair_chance=FairChanceRules(enabled=False),
)

BUILTIN_RULES: Dict[str, JurisdictionRules] = {
    r.id: r for r in (NYC_STRICT_RULES, CA_STANDARD_RULES, US_STANDARD_RULES)
}

ALIASES = {
    "ny-nyc": "nyc",
    "new-york-city": "nyc",
    "new-york": "nyc",
    "ca": "ca-standard",
    "us": "us-standard",
    "default": "us-standard",
}

DEFAULT_JURISDICTION = "us-standard"


def normalize_jurisdiction_id(jurisdiction_id: str) -> str:
    jid = jurisdiction_id.strip().lower().replace("_", "-").replace(" ", "-")
    return ALIASES.get(jid, jid)


class JurisdictionRegistry:
    """
    Static jurisdiction rule sets, optionally extended or overridden by a
    YAML document of the form::

        version: 1
        jurisdictions:
          chicago:
            name: Chicago
            broker_fee_tenant_prohibited: false
            max_security_deposit_months: 1.5
            fair_chance: {enabled: true, prohibited_before_conditional_offer: [criminal_history]}
        aliases:
          chi: chicago
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self.rules: Dict[str, JurisdictionRules] = {}
        self.aliases: Dict[str, str] = {}
        self.version = "builtin"
        self.reload()

    def _load(self) -> Dict[str, Any]:
        with open(self.path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def reload(self):
        self.rules = dict(BUILTIN_RULES)
        self.aliases = dict(ALIASES)
        if not self.path:
            return
        doc = self._load()
        self.version = str(doc.get("version", "1"))
        for jid, data in (doc.get("jurisdictions") or {}).items():
            key = normalize_jurisdiction_id(jid)
            self.rules[key] = JurisdictionRules(id=key, **{"name": key, **(data or {})})
        for alias, target in (doc.get("aliases") or {}).items():
            self.aliases[normalize_jurisdiction_id(alias)] = normalize_jurisdiction_id(target)
        logger.info(f"Loaded {len(self.rules)} jurisdiction rule sets from {self.path} (version {self.version})")

    def resolve_id(self, jurisdiction_id: Optional[str]) -> str:
        if not jurisdiction_id:
            return DEFAULT_JURISDICTION
        jid = normalize_jurisdiction_id(jurisdiction_id)
        jid = self.aliases.get(jid, jid)
        if jid in self.rules:
            return jid
        if jid.startswith("ca-") and "ca-standard" in self.rules:
            return "ca-standard"
        return DEFAULT_JURISDICTION

    def get(self, jurisdiction_id: Optional[str]) -> JurisdictionRules:
        """Rule set for a jurisdiction; unknown ids get the permissive default."""
        return self.rules[self.resolve_id(jurisdiction_id)]


_builtin_registry = JurisdictionRegistry()


def get_jurisdiction_rules(jurisdiction_id: Optional[str]) -> JurisdictionRules:
    return _builtin_registry.get(jurisdiction_id)
