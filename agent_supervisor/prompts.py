"""Directive templates sent to coding agents.

The agent's project provides the /plan-feature and /implement-feature slash
commands; these helpers only assemble the command line.
"""

RESUME_PROMPT = (
    "/implement-feature Resume the task from the last checkpoint. "
    "Review the current state of the working tree and the existing plan, "
    "then continue with the remaining work."
)


def build_planning_prompt(task_description: str) -> str:
    return f"/plan-feature {task_description}"


def build_execution_prompt(task_description: str, plan_ref: str | None = None) -> str:
    prompt = f"/implement-feature {task_description}"
    if plan_ref:
        prompt += f" --plan {plan_ref}"
    return prompt


def build_replan_prompt(
    task_description: str,
    feedback: str,
    previous_plan_path: str | None = None,
) -> str:
    """Planning directive that carries reviewer feedback on an earlier plan."""
    lines = [
        f"/plan-feature {task_description}",
        "",
        "The previous plan was rejected. Revise it using this feedback:",
        feedback,
    ]
    if previous_plan_path:
        lines += ["", f"Previous plan: {previous_plan_path}"]
    return "\n".join(lines)
