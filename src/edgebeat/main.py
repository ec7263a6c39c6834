"""
edgebeat entry point.

Usage:
    edgebeat                              Run the agent with built-in defaults
    edgebeat --config configs/config.yaml Run the agent from a config file
    edgebeat run                          Same as no subcommand
    edgebeat once                         Take one snapshot and print it
    edgebeat once --json                  Same, as the raw JSON payload
"""

from __future__ import annotations

import logging
import signal
import threading

import click

from edgebeat import __version__
from edgebeat import config as config_mod
from edgebeat.collector.aggregator import Aggregator
from edgebeat.collector.host_providers import default_providers
from edgebeat.metrics import SnapshotEncodeError, encode_snapshot
from edgebeat.scheduler import Scheduler
from edgebeat.server.http_server import MetricsServer
from edgebeat.sinks.mqtt_sink import MqttSink
from edgebeat.sinks.webhook_sink import WebhookSink
from edgebeat.storage.snapshot_store import SnapshotStore


log = logging.getLogger("edgebeat")


def _build_sinks(cfg: config_mod.Config) -> list:
    sinks = []
    if cfg.mqtt.enabled:
        mqtt_sink = MqttSink(
            broker=cfg.mqtt.broker,
            topic=cfg.mqtt.topic,
            client_id=cfg.mqtt.client_id,
            username=cfg.mqtt.username,
            password=cfg.mqtt.password,
            qos=cfg.mqtt.qos,
        )
        if not mqtt_sink.connect(timeout=cfg.mqtt.connect_timeout_seconds):
            log.warning("MQTT broker %s not reachable yet, will keep retrying", cfg.mqtt.broker)
        sinks.append(mqtt_sink)
    if cfg.webhook.enabled:
        sinks.append(WebhookSink(cfg.webhook.url, timeout_seconds=cfg.publish_timeout_seconds))
    return sinks


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="edgebeat")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="YAML config file (defaults are used when omitted)")
@click.option("--frequency", type=int, default=None, help="Collection interval in seconds (1-180)")
@click.option("--address", default=None, help="HTTP listen address, e.g. :8080")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx, config_path: str, frequency: int, address: str, verbose: bool):
    """edgebeat - host telemetry agent."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        cfg = config_mod.load(config_path)
        if frequency is not None:
            cfg.frequency_seconds = frequency
        if address is not None:
            cfg.rest.address = address
        cfg.validate()
    except config_mod.ConfigError as e:
        raise click.ClickException(str(e))

    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg

    # No subcommand: run the agent
    if ctx.invoked_subcommand is None:
        run_agent(cfg)


def run_agent(cfg: config_mod.Config):
    store = SnapshotStore()
    aggregator = Aggregator(default_providers(), provider_timeout=cfg.provider_timeout_seconds)
    sinks = _build_sinks(cfg)
    scheduler = Scheduler(
        aggregator,
        interval=cfg.frequency_seconds,
        store=store,
        sinks=sinks,
        publish_timeout=cfg.publish_timeout_seconds,
    )

    try:
        server = MetricsServer(cfg.rest.address, store=store)
    except (OSError, ValueError) as e:
        for sink in sinks:
            sink.close()
        aggregator.close()
        raise click.ClickException(f"cannot listen on {cfg.rest.address}: {e}")

    stop = threading.Event()

    def _handle_signal(signum, frame):
        log.info("Received %s, shutting down", signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    server.serve_in_thread()
    try:
        scheduler.run(stop)
    finally:
        server.stop()
        for sink in sinks:
            try:
                sink.close()
            except Exception as e:
                log.error("Closing %s failed: %s", sink.name(), e)
        aggregator.close()


@cli.command()
@click.pass_context
def run(ctx):
    """Run the agent (same as no subcommand)."""
    run_agent(ctx.obj["config"])


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the raw JSON payload")
@click.pass_context
def once(ctx, as_json: bool):
    """Take a single snapshot and print it."""
    from edgebeat.dashboard.terminal import print_snapshot

    cfg = ctx.obj["config"]
    aggregator = Aggregator(default_providers(), provider_timeout=cfg.provider_timeout_seconds)
    try:
        snapshot, _ = aggregator.collect()
    finally:
        aggregator.close()

    if as_json:
        try:
            click.echo(encode_snapshot(snapshot).decode())
        except SnapshotEncodeError as e:
            raise click.ClickException(str(e))
        return

    print_snapshot(snapshot)


if __name__ == "__main__":
    cli()
