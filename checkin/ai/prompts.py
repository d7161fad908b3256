"""
Check-in Platform
Directive builders for each completion-service call site.

Every builder returns a chat message list: one system directive naming
the task and the exact JSON shape expected back, then one user message
carrying the structured context.  The response contracts themselves
live in ``checkin.ai.contracts``.
"""

import json

TASK_FOLLOWUP = "followup_decision"
TASK_SUMMARY = "conversation_summary"
TASK_ACTIONS = "conversation_actions"
TASK_TOP_ACTIONS = "top_actions_plan"
TASK_INSIGHT = "organization_insight"

_BASE_RULES = (
    "You support a periodic workplace reflection conversation. "
    "Never ask for or repeat personal data such as names, contact details or health information. "
    "Answer with a single JSON object and nothing else."
)


def _history_lines(history: list[dict]) -> list[dict]:
    return [
        {"kind": h["kind"], "question": h.get("text", ""), "answer": h.get("answer")}
        for h in history
        if h.get("kind") != "annotation"
    ]


def _messages(task: str, directive: str, context: dict) -> list[dict]:
    return [
        {"role": "system", "content": f"Task: {task}\n{_BASE_RULES}\n{directive}"},
        {"role": "user", "content": json.dumps(context, ensure_ascii=False, default=str)},
    ]


def followup_decision(theme: dict, question: str, answer: str, history: list[dict]) -> list[dict]:
    directive = (
        "Decide whether the last answer needs one follow-up question to become clear. "
        'Return {"continue": bool, "reply": str, "next_question": str|null, "rationale": str}. '
        "When continue is true, next_question is the single follow-up question. "
        "reply is a short empathetic acknowledgement of the answer."
    )
    return _messages(TASK_FOLLOWUP, directive, {
        "theme": theme.get("title"),
        "goal": theme.get("goal"),
        "question": question,
        "answer": answer,
        "conversation_so_far": _history_lines(history),
    })


def conversation_summary(theme: dict, history: list[dict]) -> list[dict]:
    directive = (
        "Summarise the conversation in at most six sentences, addressed to the participant, "
        "and score the situation from 1 (very concerning) to 10 (excellent) using the rubric. "
        'Return {"summary": str, "score": int}.'
    )
    return _messages(TASK_SUMMARY, directive, {
        "theme": theme.get("title"),
        "rubric": theme.get("scoring_rubric"),
        "conversation": _history_lines(history),
    })


def conversation_actions(theme: dict, history: list[dict], summary: str | None) -> list[dict]:
    directive = (
        "Propose exactly three concrete, small follow-up actions the participant can take. "
        'Return {"actions": [str, str, str], "rationale": str}.'
    )
    return _messages(TASK_ACTIONS, directive, {
        "theme": theme.get("title"),
        "summary": summary,
        "conversation": _history_lines(history),
    })


def top_actions_plan(period: str, conversations: list[dict]) -> list[dict]:
    directive = (
        "Across all themes below, select the three most impactful actions for this period, "
        "ranked, each with priority high, medium or low and a one-sentence rationale. "
        'Return {"actions": [{"text": str, "priority": str, "rationale": str}] (exactly 3), '
        '"general_rationale": str}.'
    )
    return _messages(TASK_TOP_ACTIONS, directive, {
        "period": period,
        "conversations": [
            {
                "theme": c["theme"],
                "summary": c.get("summary"),
                "score": c.get("score"),
                "conversation": _history_lines(c["history"]),
            }
            for c in conversations
        ],
    })


def organization_insight(theme: dict, scope_label: str, members: list[dict]) -> list[dict]:
    directive = (
        "Write an anonymous aggregate for the organization about this theme. "
        "Do not quote or identify individuals. "
        'Return {"summary": str, "advice": [{"text": str, "priority": 1|2|3}] (1 to 5 items), '
        '"signal_words": [str]}.'
    )
    return _messages(TASK_INSIGHT, directive, {
        "theme": theme.get("title"),
        "scope": scope_label,
        "participants": [
            {"summary": m.get("summary"), "score": m.get("score"),
             "conversation": _history_lines(m["history"])}
            for m in members
        ],
    })
