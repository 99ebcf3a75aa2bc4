#!/usr/bin/env python3
"""
Look up and remove scheduled script deployments in the site database.

Usage:
  cm-get-scheduled-scripts [--schedule-id ID | --script-name NAME | ...] [--json]
  cm-remove-scheduled-script --schedule-id ID
"""
import argparse
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, List

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from .cli import add_common_arguments, configure_logging, confirm, print_records
from .config import Settings
from .errors import CmToolkitError
from .validation import validate_identifier

logger = logging.getLogger(__name__)

SCHEDULE_VIEW = "dbo.vSMS_ScheduleScripts"

# selector keyword -> view column
SELECTORS = {
    "schedule_id": "ScheduleId",
    "script_guid": "ScriptGuid",
    "script_name": "ScriptName",
    "collection_id": "CollectionId",
    "collection_name": "CollectionName",
}

COLUMNS = (
    "ScheduleId", "ScriptGuid", "ScriptName", "CollectionId",
    "CollectionName", "ProcessedState", "CreatedTime", "ScheduleTime",
)


@dataclass
class ScheduledScript:
    schedule_id: str
    script_guid: str
    script_name: str
    collection_id: str
    collection_name: str
    processed_state: Any = None
    created_time: Any = None
    schedule_time: Any = None

    @classmethod
    def from_row(cls, row):
        m = row._mapping
        return cls(
            schedule_id=str(m["ScheduleId"]),
            script_guid=str(m["ScriptGuid"]),
            script_name=m["ScriptName"],
            collection_id=m["CollectionId"],
            collection_name=m["CollectionName"],
            processed_state=m["ProcessedState"],
            created_time=m["CreatedTime"],
            schedule_time=m["ScheduleTime"],
        )


class RemovalResult(enum.Enum):
    DELETED = "deleted"
    DECLINED = "declined"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"


def _select_sql(view, column=None):
    sql = f"SELECT {', '.join(COLUMNS)} FROM {view}"
    if column:
        sql += f" WHERE {column} = :value"
    return text(sql + " ORDER BY ScheduleTime")


def get_scheduled_scripts(engine, view=SCHEDULE_VIEW, **selector) -> List[ScheduledScript]:
    """
    Return scheduled script deployments, all of them or those matching one selector.

    Accepted selectors: schedule_id, script_guid, script_name, collection_id,
    collection_name. Passing more than one is an error; the value is checked
    against the identifier allow-list before the database is touched.
    """
    given = {k: v for k, v in selector.items() if v is not None}
    unknown = set(given) - set(SELECTORS)
    if unknown:
        raise TypeError(f"Unknown selector(s): {', '.join(sorted(unknown))}")
    if len(given) > 1:
        raise ValueError(f"Only one selector may be given, got: {', '.join(sorted(given))}")

    params = {}
    column = None
    if given:
        key, value = next(iter(given.items()))
        params["value"] = validate_identifier(value, key)
        column = SELECTORS[key]

    with engine.connect() as conn:
        rows = conn.execute(_select_sql(view, column), params).fetchall()
    logger.debug("%d row(s) from %s", len(rows), view)
    return [ScheduledScript.from_row(r) for r in rows]


def remove_scheduled_script(
    engine,
    schedule_id,
    confirm_removal: Callable[[ScheduledScript], bool],
    view=SCHEDULE_VIEW,
) -> RemovalResult:
    """
    Delete one scheduled script deployment after the caller confirms it.

    confirm_removal receives the matched row and must return True for the
    delete to happen.
    """
    schedule_id = validate_identifier(schedule_id, "schedule_id")
    matches = get_scheduled_scripts(engine, view=view, schedule_id=schedule_id)
    if not matches:
        logger.info("No scheduled script deployment with ScheduleId %s", schedule_id)
        return RemovalResult.NOT_FOUND
    if len(matches) > 1:
        logger.warning("ScheduleId %s matched %d rows; nothing deleted", schedule_id, len(matches))
        return RemovalResult.AMBIGUOUS

    if not confirm_removal(matches[0]):
        logger.info("Removal of %s declined", schedule_id)
        return RemovalResult.DECLINED

    with engine.begin() as conn:
        conn.execute(text(f"DELETE FROM {view} WHERE ScheduleId = :value"), {"value": schedule_id})
    logger.info("Deleted scheduled script deployment %s", schedule_id)
    return RemovalResult.DELETED


def _engine(settings):
    return create_engine(settings.database_url())


def get_main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="List scheduled script deployments")
    group = ap.add_mutually_exclusive_group()
    for key in SELECTORS:
        group.add_argument(f"--{key.replace('_', '-')}", dest=key)
    ap.add_argument("--json", action="store_true", help="Print rows as JSON")
    add_common_arguments(ap)
    args = ap.parse_args(argv)
    configure_logging(args.verbose)

    selector = {k: getattr(args, k) for k in SELECTORS}
    engine = None
    try:
        engine = _engine(Settings.from_env())
        rows = get_scheduled_scripts(engine, **selector)
    except (CmToolkitError, SQLAlchemyError) as e:
        logger.error("%s", e)
        return 1
    finally:
        if engine is not None:
            engine.dispose()

    if not rows:
        print("No scheduled script deployments found.")
        return 0
    print_records(rows, as_json=args.json)
    return 0


def _prompt(script: ScheduledScript) -> bool:
    print_records([script])
    return confirm("Delete this scheduled script deployment?")


def remove_main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Remove a scheduled script deployment")
    ap.add_argument("--schedule-id", required=True)
    add_common_arguments(ap)
    args = ap.parse_args(argv)
    configure_logging(args.verbose)

    engine = None
    try:
        engine = _engine(Settings.from_env())
        result = remove_scheduled_script(engine, args.schedule_id, _prompt)
    except (CmToolkitError, SQLAlchemyError) as e:
        logger.error("%s", e)
        return 1
    finally:
        if engine is not None:
            engine.dispose()

    messages = {
        RemovalResult.DELETED: f"Deleted scheduled script deployment {args.schedule_id}.",
        RemovalResult.DECLINED: "Nothing deleted.",
        RemovalResult.NOT_FOUND: f"No scheduled script deployment found with ScheduleId {args.schedule_id}.",
        RemovalResult.AMBIGUOUS: f"ScheduleId {args.schedule_id} is not unique; nothing deleted.",
    }
    print(messages[result])
    return 0 if result in (RemovalResult.DELETED, RemovalResult.DECLINED) else 1


if __name__ == "__main__":
    raise SystemExit(get_main())
