"""Analytics add-on: exposes the event logger as RW2Analytics."""

from courier.services.analytics import Analytics

MARKER = "RW2Analytics"


def setup(host):
    if host.has_global(MARKER):
        return

    runtime = host.runtime
    if runtime is None:
        raise RuntimeError("analytics add-on needs a runtime")

    analytics = Analytics.from_settings(
        runtime.config["analytics"],
        runtime.durable_store,
        runtime.bus,
        page_url=host.url,
    )
    host.expose(MARKER, analytics)
    runtime.pipelines.append(analytics.pipeline)
    host.schedule(analytics.init())
