"""Fold per-plugin outcomes into summary counts, the audit log and report views.

Everything here is a pure function of the outcome sequence. Report views read
the structured outcomes; the text log is only ever written, never parsed.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from plugaudit.audit.models import AuditOutcome, AuditSummary, OutcomeKind, Severity

NO_REPOSITORY_BODY = "No repository"

# Display labels, ordered from most to least urgent
ISSUE_LABELS = [
    "Critical",
    "High",
    "Moderate",
    "Low",
    "Info",
    "No issues",
    "Audit failed",
    "Not audited",
]


def block_header(outcome: AuditOutcome) -> str:
    return f"=== {outcome.plugin_name} ({outcome.plugin_id}) ==="


def block_body(outcome: AuditOutcome) -> str:
    if outcome.kind is OutcomeKind.NO_REPOSITORY:
        return NO_REPOSITORY_BODY
    if outcome.kind is OutcomeKind.AUDITED or outcome.raw_output:
        return (outcome.raw_output or "").rstrip("\n")
    return f"Error: {outcome.reason}"


def render_block(outcome: AuditOutcome) -> str:
    return f"{block_header(outcome)}\n{block_body(outcome)}\n\n"


def summarize(outcomes: Iterable[AuditOutcome]) -> AuditSummary:
    summary = AuditSummary()
    for outcome in outcomes:
        summary.record(outcome)
    return summary


def render_log(outcomes: Iterable[AuditOutcome]) -> str:
    return "".join(render_block(outcome) for outcome in outcomes)


def fold(outcomes: Sequence[AuditOutcome]) -> tuple[AuditSummary, str]:
    """Summary counts and audit log for ``outcomes``, in input order."""
    return summarize(outcomes), render_log(outcomes)


def issue_label(outcome: AuditOutcome | None) -> str:
    """Short label used in plugin listings."""
    if outcome is None:
        return "Not audited"
    if outcome.kind is OutcomeKind.AUDITED:
        if outcome.severity is None or outcome.severity is Severity.NONE:
            return "No issues"
        return outcome.severity.value.capitalize()
    if outcome.kind is OutcomeKind.NO_REPOSITORY:
        return "Not audited"
    return "Audit failed"


def label_rank(label: str) -> int:
    """Sort key placing the most urgent label first."""
    return ISSUE_LABELS.index(label) if label in ISSUE_LABELS else len(ISSUE_LABELS)


def insecure_outcomes(outcomes: Iterable[AuditOutcome]) -> list[AuditOutcome]:
    """Audited plugins with at least one finding, worst first (stable)."""
    flagged = [
        outcome
        for outcome in outcomes
        if outcome.kind is OutcomeKind.AUDITED
        and outcome.severity is not None
        and outcome.severity is not Severity.NONE
    ]
    return sorted(flagged, key=lambda outcome: -outcome.severity.rank)


def failed_outcomes(outcomes: Iterable[AuditOutcome]) -> list[AuditOutcome]:
    return [outcome for outcome in outcomes if outcome.is_failure]


def insecurities_report(outcomes: Iterable[AuditOutcome]) -> str:
    text = ""
    for outcome in insecure_outcomes(outcomes):
        text += f"{block_header(outcome)}\n"
        text += f"Highest Severity: {outcome.severity.value}\n"
        text += "Insecure Libraries:\n"
        for dep in outcome.dependencies:
            text += f"  - {dep.name} ({dep.severity.value})\n"
        text += "\n"
    return text or "No insecurities found."


def failures_report(outcomes: Iterable[AuditOutcome]) -> str:
    text = ""
    for outcome in failed_outcomes(outcomes):
        if outcome.kind is OutcomeKind.NO_REPOSITORY:
            detail = NO_REPOSITORY_BODY
        else:
            detail = f"Error: {outcome.reason}"
        text += f"{block_header(outcome)}\n{detail}\n\n"
    return text or "No failures found."
