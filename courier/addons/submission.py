"""Submission add-on: exposes the submission controller as RW2Submission."""

from courier.services.submission import SubmissionController

MARKER = "RW2Submission"


def setup(host):
    if host.has_global(MARKER):
        return

    runtime = host.runtime
    if runtime is None:
        raise RuntimeError("submission add-on needs a runtime")

    controller = SubmissionController.from_settings(
        runtime.config["submission"],
        runtime.durable_store,
        runtime.capture_store,
        runtime.bus,
        state_provider=runtime.state_provider,
    )
    host.expose(MARKER, controller)
    runtime.pipelines.append(controller.pipeline)

    # Retry submissions left over from earlier runs
    host.schedule(controller.init())
