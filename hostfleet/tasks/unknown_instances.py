"""Recovery of instances a provider no longer knows about.

Providers don't report vanished instances as structured data. A batch
status query instead fails as a whole, with the offending ids embedded in
the error text, e.g.:

    InvalidInstanceID.NotFound: The instance IDs 'h1, h2' do not exist

Parsing that text is a best-effort fallback: when no id list can be
recovered, nothing is terminated and the batch is retried next pass.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, Mapping, Protocol

from hostfleet.metrics import host_transitions, unknown_instances_terminated
from hostfleet.services.state_machine import HostStateMachine
from hostfleet.state import HostStatus
from hostfleet.store import HostStore

logger = logging.getLogger(__name__)

UNKNOWN_INSTANCE_REASON = "instance is missing from provider"

# A quoted, comma-separated id list followed by a "does not exist" or
# "not found" phrase
UNKNOWN_INSTANCES_PATTERN = re.compile(
    r"""(?P<quote>['"])(?P<ids>[^'"]+)(?P=quote)\s+"""
    r"""(?:(?:do|does)\s+not\s+exist|(?:(?:was|were|is|are)\s+)?not\s+found)""",
    re.IGNORECASE,
)


class CandidateHost(Protocol):
    id: str


def parse_unknown_instance_ids(error_text: str | None) -> list[str]:
    """Extract instance ids a provider error reports as nonexistent.

    Returns ids in order of appearance without duplicates, or an empty
    list when the text doesn't match the expected shape.
    """
    if not error_text:
        return []
    ids: list[str] = []
    for match in UNKNOWN_INSTANCES_PATTERN.finditer(error_text):
        for token in match.group("ids").split(","):
            token = token.strip()
            # Anything with inner whitespace is prose, not an id
            if not token or any(ch.isspace() for ch in token):
                continue
            if token not in ids:
                ids.append(token)
    return ids


def terminate_unknown_hosts(
    store: HostStore,
    candidates: Mapping[str, CandidateHost],
    instance_ids: Iterable[str],
    *,
    provider: str = "",
) -> list[str]:
    """Terminate the candidate hosts whose instances the provider lost.

    Each update is guarded only by "still non-terminal", so a host moved by
    another writer in the meantime is still terminated, while one already
    terminated is left alone. Ids that don't belong to a candidate host are
    ignored.

    Returns:
        Ids of hosts that were actually terminated
    """
    non_terminal = HostStateMachine.non_terminal_states()
    terminated: list[str] = []
    for instance_id in instance_ids:
        host = candidates.get(instance_id)
        if host is None:
            logger.debug(f"Ignoring unknown instance {instance_id}: not a candidate host")
            continue
        prior = store.swap_status(
            instance_id,
            non_terminal,
            HostStatus.TERMINATED,
            reason=UNKNOWN_INSTANCE_REASON,
        )
        if prior is None:
            logger.debug(f"Host {instance_id} already terminal, nothing to do")
            continue
        terminated.append(instance_id)
        host_transitions.labels(from_status=prior, to_status=HostStatus.TERMINATED.value).inc()
        unknown_instances_terminated.labels(provider=provider).inc()
        logger.info(f"Terminated host {instance_id} (was {prior}): {UNKNOWN_INSTANCE_REASON}")
    return terminated
