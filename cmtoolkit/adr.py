#!/usr/bin/env python3
"""
Copy an Automatic Deployment Rule, including its per-collection deployments.

The clone is created bare from the source's title/required criteria, then
reconciled against the source: templates are copied, the schedule is
re-encoded through fresh tokens, and every extra collection deployment is
replayed onto the new rule.

Usage:
  cm-copy-adr "Patch Tuesday - Workstations" "Patch Tuesday - Pilot" --collection-id PS100042
"""
import argparse
import html
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .adminservice import AdminServiceClient, odata_literal
from .cli import add_common_arguments, configure_logging
from .config import Settings
from .errors import CmToolkitError
from .schedule import reencode_schedule

logger = logging.getLogger(__name__)

ADR_CLASS = "SMS_AutoDeployment"
DEPLOYMENT_SETTINGS_CLASS = "SMS_ADRDeploymentSettings"
DEPLOYMENT_SETTINGS_KEY = ("RuleID", "CollectionID", "DeploymentNumber")

# update-rule property -> creation parameter
SUPPORTED_PROPERTIES = {
    "LocalizedDisplayName": "Title",
    "NumMissing": "Required",
}

RULE_ITEM = re.compile(
    r'<UpdateXMLDescriptionItem\s+PropertyName="([^"]+)"[^>]*>(.*?)</UpdateXMLDescriptionItem>',
    re.DOTALL,
)
MATCH_STRING = re.compile(r"<string>(.*?)</string>", re.DOTALL)
COLLECTION_ELEMENT = re.compile(r"(<CollectionId>)(.*?)(</CollectionId>)", re.DOTALL)


@dataclass
class ReplicationResult:
    collection_id: str
    status: str  # created|failed
    detail: str = ""


@dataclass
class CopyResult:
    source_id: int
    clone_id: int
    name: str
    collection_id: str
    replications: List[ReplicationResult] = field(default_factory=list)

    @property
    def failed(self):
        return [r for r in self.replications if r.status == "failed"]


# ─── SOURCE READER ─────────────────────────────────────────────────────────────

def find_rule(cm, name) -> Optional[Dict[str, Any]]:
    matches = cm.query(ADR_CLASS, filter=f"Name eq {odata_literal(name)}", select=["AutoDeploymentID", "Name"])
    if len(matches) > 1:
        raise CmToolkitError(f"ADR name '{name}' is not unique ({len(matches)} matches)")
    return matches[0] if matches else None


def read_source_rule(cm, name) -> Optional[Dict[str, Any]]:
    """The ADR with its lazy properties (templates, update rule XML), or None."""
    match = find_rule(cm, name)
    if match is None:
        return None
    return cm.get(ADR_CLASS, int(match["AutoDeploymentID"]))


# ─── PROPERTY EXTRACTOR ────────────────────────────────────────────────────────

def extract_creation_parameters(update_rule_xml) -> Dict[str, Any]:
    """
    Map the update rule's Title and Required criteria to creation parameters.

    Only LocalizedDisplayName and NumMissing are carried; every other
    property in the rule is dropped here and restored later by copying the
    full UpdateRuleXML.
    """
    parameters: Dict[str, Any] = {}
    for prop, body in RULE_ITEM.findall(update_rule_xml or ""):
        target = SUPPORTED_PROPERTIES.get(prop)
        if target is None:
            continue
        values = [html.unescape(v.strip()) for v in MATCH_STRING.findall(body)]
        if not values:
            continue
        parameters[target] = values if target == "Title" else values[0]
    return parameters


def build_update_rule_xml(parameters) -> str:
    items = []
    reverse = {v: k for k, v in SUPPORTED_PROPERTIES.items()}
    for target in ("Title", "Required"):
        if target not in parameters:
            continue
        values = parameters[target]
        if isinstance(values, str):
            values = [values]
        strings = "".join(f"<string>{html.escape(v, quote=False)}</string>" for v in values)
        items.append(
            f'<UpdateXMLDescriptionItem PropertyName="{reverse[target]}" UIPropertyName="">'
            f"<MatchRules>{strings}</MatchRules></UpdateXMLDescriptionItem>"
        )
    return (
        '<UpdateXML xmlns:xsd="http://www.w3.org/2001/XMLSchema">'
        f"<UpdateXMLDescriptionItems>{''.join(items)}</UpdateXMLDescriptionItems></UpdateXML>"
    )


# ─── RULE CREATOR ──────────────────────────────────────────────────────────────

def create_bare_clone(cm, source, new_name, parameters, collection_id=None) -> Dict[str, Any]:
    """New, disabled ADR with zeroed identifiers and only the extracted criteria."""
    properties = {
        "AutoDeploymentID": 0,
        "Name": new_name,
        "Description": source.get("Description") or "",
        "CollectionID": collection_id or source["CollectionID"],
        "AutoDeploymentEnabled": False,
        "UpdateRuleXML": build_update_rule_xml(parameters),
    }
    clone = cm.create(ADR_CLASS, properties)
    logger.info("Created ADR '%s' (id %s)", new_name, clone.get("AutoDeploymentID"))
    return clone


# ─── RECONCILIATION ────────────────────────────────────────────────────────────

def copy_template(source_xml, collection_id):
    """The source deployment template, pointed at collection_id."""
    if not source_xml:
        return source_xml
    return COLLECTION_ELEMENT.sub(lambda m: f"{m.group(1)}{collection_id}{m.group(3)}", source_xml, count=1)


def apply_source_templates(cm, source, clone, schedule, enable=False) -> Dict[str, Any]:
    """Single update carrying the source templates and the already re-encoded schedule."""
    changes = {
        "DeploymentTemplate": copy_template(source.get("DeploymentTemplate"), clone["CollectionID"]),
        "UpdateRuleXML": source.get("UpdateRuleXML"),
        "ContentTemplate": source.get("ContentTemplate"),
        "Schedule": schedule,
        "AutoDeploymentEnabled": enable,
    }
    cm.update(ADR_CLASS, int(clone["AutoDeploymentID"]), changes)
    logger.info("Copied templates and schedule onto '%s'", clone.get("Name"))
    merged = dict(clone)
    merged.update(changes)
    return merged


# ─── DEPLOYMENT-RULE REPLICATOR ────────────────────────────────────────────────

def replicate_deployment_rules(cm, source, clone) -> List[ReplicationResult]:
    """
    Replay the source ADR's extra collection deployments onto the clone.

    The settings query does not carry the lazy DeploymentTemplate, so each
    instance is read again by its key before its template is copied.
    The clone's own collection is skipped; it was covered at creation. A
    failure is logged and the next collection is attempted; nothing is
    rolled back.
    """
    settings = cm.query(
        DEPLOYMENT_SETTINGS_CLASS,
        filter=f"RuleID eq {int(source['AutoDeploymentID'])}",
        select=list(DEPLOYMENT_SETTINGS_KEY),
    )
    covered = {clone["CollectionID"]}
    results: List[ReplicationResult] = []
    for s in settings:
        cid = s.get("CollectionID")
        if cid in covered:
            continue
        covered.add(cid)
        try:
            key = {
                "RuleID": int(s["RuleID"]),
                "CollectionID": cid,
                "DeploymentNumber": int(s["DeploymentNumber"]),
            }
            full = cm.get(DEPLOYMENT_SETTINGS_CLASS, key) or {}
            template = full.get("DeploymentTemplate")
            if not template:
                raise CmToolkitError("no DeploymentTemplate returned")
            cm.create(DEPLOYMENT_SETTINGS_CLASS, {
                "RuleID": int(clone["AutoDeploymentID"]),
                "CollectionID": cid,
                "DeploymentNumber": 0,
                "DeploymentTemplate": copy_template(template, cid),
            })
        except CmToolkitError as e:
            logger.error("Failed to replicate deployment to %s: %s", cid, e)
            results.append(ReplicationResult(collection_id=cid, status="failed", detail=str(e)))
            continue
        logger.info("Replicated deployment to %s", cid)
        results.append(ReplicationResult(collection_id=cid, status="created"))
    return results


def copy_adr(cm, source_name, new_name, collection_id=None, enable=False) -> Optional[CopyResult]:
    source = read_source_rule(cm, source_name)
    if source is None:
        logger.info("ADR '%s' not found", source_name)
        return None
    if find_rule(cm, new_name) is not None:
        raise CmToolkitError(f"An ADR named '{new_name}' already exists")

    parameters = extract_creation_parameters(source.get("UpdateRuleXML"))
    logger.debug("Creation parameters: %s", parameters)
    # an unreadable schedule must fail before anything is written
    schedule = reencode_schedule(cm, source.get("Schedule"))
    clone = create_bare_clone(cm, source, new_name, parameters, collection_id=collection_id)
    clone = apply_source_templates(cm, source, clone, schedule, enable=enable)
    replications = replicate_deployment_rules(cm, source, clone)
    return CopyResult(
        source_id=int(source["AutoDeploymentID"]),
        clone_id=int(clone["AutoDeploymentID"]),
        name=new_name,
        collection_id=clone["CollectionID"],
        replications=replications,
    )


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Copy an Automatic Deployment Rule")
    ap.add_argument("source", help="Name of the ADR to copy")
    ap.add_argument("name", help="Name of the new ADR")
    ap.add_argument("--collection-id", help="Target collection for the new ADR (default: the source's)")
    ap.add_argument("--enable", action="store_true", help="Enable the new ADR once copied")
    add_common_arguments(ap)
    args = ap.parse_args(argv)
    configure_logging(args.verbose)

    cm = None
    try:
        cm = AdminServiceClient.from_settings(Settings.from_env())
        result = copy_adr(cm, args.source, args.name, collection_id=args.collection_id, enable=args.enable)
    except CmToolkitError as e:
        logger.error("%s", e)
        return 1
    finally:
        if cm is not None:
            cm.close()

    if result is None:
        print(f"ADR '{args.source}' not found.")
        return 1
    print(f"Copied '{args.source}' -> '{result.name}' (id {result.clone_id}, collection {result.collection_id})")
    for r in result.replications:
        print(f"  {r.collection_id}: {r.status}" + (f" ({r.detail})" if r.detail else ""))
    return 1 if result.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
