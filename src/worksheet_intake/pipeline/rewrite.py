"""Invocation of the external code-rewriting agent."""

from __future__ import annotations

from pathlib import Path

from worksheet_intake.pipeline.supervisor import ProcessSupervisor, render_command


def build_rewrite_prompt(*, endpoint_path: str, model: str) -> str:
    """Fixed instruction set handed to the rewrite agent."""

    return "\n".join(
        [
            "You are integrating an uploaded worksheet project for safe production.",
            "Task:",
            "1) Remove Gemini and any Google Generative Language usage.",
            "2) Remove direct client API keys/process.env leakage.",
            f"3) Wire AI calls to POST {endpoint_path} with model {model}.",
            "4) Keep worksheet behavior equivalent.",
            "5) Ensure build succeeds.",
            "6) Do not add new external AI SDK dependencies.",
            "",
            "After edits, leave the project ready for `npm run build`.",
        ],
    )


def run_rewrite_agent(  # noqa: PLR0913
    *,
    supervisor: ProcessSupervisor,
    command_template: str,
    project_root: Path,
    work_dir: Path,
    endpoint_path: str,
    model: str,
    timeout_seconds: float,
) -> None:
    """Run the agent against `project_root`; raises ProcessRunError on failure."""

    prompt = build_rewrite_prompt(endpoint_path=endpoint_path, model=model)
    argv = render_command(
        command_template,
        {"project_root": project_root, "prompt": prompt},
    )
    supervisor.run(argv[0], argv[1:], work_dir=work_dir, timeout_seconds=timeout_seconds)
