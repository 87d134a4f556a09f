#!/usr/bin/env python3
"""
Describe the grant proposal workflow.

Prints every state with its metadata (display name, required roles, SLA),
the transitions available from it and where each one leads.  With --state
only that state is shown.  With --json the same data is emitted as JSON
for tooling.

Usage:
  python3 scripts/describe_workflow.py [--state DRAFT] [--json]
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from grants_kernel.domain.proposal_workflow import (  # noqa: E402
    PROPOSAL_WORKFLOW,
    ProposalState,
    get_proposal_state_machine,
)
from grants_kernel.domain.state_metadata import get_state_metadata  # noqa: E402


def describe_state(state: ProposalState) -> dict[str, Any]:
    machine = get_proposal_state_machine()
    metadata = get_state_metadata(state)
    transitions = sorted(machine.get_available_transitions(state), key=lambda t: t.value)
    return {
        "state": state.value,
        "display_name": metadata.display_name,
        "description": metadata.description,
        "terminal": state.is_terminal,
        "editable": state.can_edit,
        "required_roles": sorted(metadata.required_roles),
        "notified_roles": sorted(metadata.notified_roles),
        "sla_hours": metadata.sla_hours,
        "transitions": {
            t.value: machine.get_next_state(state, t).value for t in transitions
        },
    }


def describe_workflow(states: list[ProposalState] | None = None) -> dict[str, Any]:
    selected = states or list(ProposalState)
    return {
        "workflow": PROPOSAL_WORKFLOW.name,
        "initial_state": PROPOSAL_WORKFLOW.initial_state.value,
        "edge_count": len(PROPOSAL_WORKFLOW.transitions),
        "states": [describe_state(s) for s in selected],
    }


def render_text(description: dict[str, Any]) -> str:
    lines = [
        f"Workflow: {description['workflow']} "
        f"(initial {description['initial_state']}, {description['edge_count']} edges)",
        "",
    ]
    for entry in description["states"]:
        flags = []
        if entry["terminal"]:
            flags.append("terminal")
        if entry["editable"]:
            flags.append("editable")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        lines.append(f"{entry['state']} -- {entry['display_name']}{suffix}")
        roles = ", ".join(entry["required_roles"]) or "none (owner may withdraw)"
        lines.append(f"    roles: {roles}")
        if entry["sla_hours"]:
            lines.append(f"    sla:   {entry['sla_hours']}h")
        for transition, target in entry["transitions"].items():
            lines.append(f"    {transition:<20} -> {target}")
        lines.append("")
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Describe the grant proposal workflow")
    parser.add_argument(
        "--state",
        action="append",
        choices=[s.value for s in ProposalState],
        help="Only describe this state (repeatable)",
    )
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of text")
    args = parser.parse_args(argv)

    states = [ProposalState(s) for s in args.state] if args.state else None
    description = describe_workflow(states)
    if args.json:
        print(json.dumps(description, indent=2))
    else:
        print(render_text(description))
    return 0


if __name__ == "__main__":
    sys.exit(main())
