"""
Main CLI application for the intake gateway.

Provides the command-line interface for serving the HTTP API, routing or
processing individual messages, running workflows and draining batches.
"""

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Dict, Any, List, Optional

import click
import uvicorn
import yaml
from fastapi import FastAPI

from intake_gateway import __version__
from intake_gateway.lib.config import IntakeConfig, ConfigurationManager, initialize_config, ConfigurationError
from intake_gateway.lib.event_channel import EventChannel
from intake_gateway.lib.logging_config import setup_logging, get_audit_logger
from intake_gateway.lib.metrics import initialize_metrics
from intake_gateway.lib.observability import initialize_telemetry, shutdown_telemetry, get_meter
from intake_gateway.models.batch import QueueItem
from intake_gateway.models.message import Message
from intake_gateway.models.workflow import ExecutionMode
from intake_gateway.services.batch_consumer import BatchConsumer, LocalQueue, pipeline_handler
from intake_gateway.services.capability_registry import build_default_registry
from intake_gateway.services.delivery import DeliveryService, LoggingDeliveryAdapter
from intake_gateway.services.http_api import create_app
from intake_gateway.services.identity import IdentityService
from intake_gateway.services.inference_client import HttpInferenceClient
from intake_gateway.services.intake_pipeline import IntakePipeline
from intake_gateway.services.interfaces.delivery import IDeliveryAdapter
from intake_gateway.services.interfaces.identity import IIdentityAuthority
from intake_gateway.services.interfaces.inference import IInferenceCapability
from intake_gateway.services.interfaces.storage import IStorageAdapter
from intake_gateway.services.routing_engine import RoutingEngine
from intake_gateway.services.session_store import SessionStateStore
from intake_gateway.services.storage import create_storage_adapter
from intake_gateway.services.workflow_orchestrator import WorkflowOrchestrator
from intake_gateway.services.workflow_templates import build_task, template_names


logger = logging.getLogger("intake_gateway.cli")


class IntakeApplication:
    """Composition root wiring configuration, telemetry and services."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        config: Optional[IntakeConfig] = None,
        inference: Optional[IInferenceCapability] = None,
        storage: Optional[IStorageAdapter] = None,
        delivery_adapter: Optional[IDeliveryAdapter] = None,
        identity_authority: Optional[IIdentityAuthority] = None,
        configure_logging: bool = True
    ):
        self.config_path = config_path
        self.config = config
        self.configure_logging = configure_logging
        self.inference = inference
        self.storage = storage
        self.delivery_adapter = delivery_adapter
        self.identity_authority = identity_authority

        self.engine: Optional[RoutingEngine] = None
        self.orchestrator: Optional[WorkflowOrchestrator] = None
        self.store: Optional[SessionStateStore] = None
        self.pipeline: Optional[IntakePipeline] = None
        self.events: Optional[EventChannel] = None
        self.batch_consumer: Optional[BatchConsumer] = None
        self.initialized = False

        self._owned_inference: Optional[HttpInferenceClient] = None
        self._telemetry_enabled = False
        self._shutdown_event: Optional[asyncio.Event] = None

    async def initialize(self) -> None:
        """Build every service from configuration and start the event channel."""
        if self.initialized:
            return

        logger.info("Initializing intake gateway")
        if self.config is None:
            self.config = initialize_config(self.config_path).get_config()
        config = self.config

        if self.configure_logging:
            setup_logging(config.logging.model_dump())

        if config.observability.enabled:
            initialize_telemetry(config.observability.model_dump())
            self._telemetry_enabled = True
        metrics_collector = initialize_metrics(get_meter())
        audit_logger = get_audit_logger()

        if self.inference is None and config.inference.endpoint:
            self._owned_inference = HttpInferenceClient(config.inference)
            self.inference = self._owned_inference
        if self.storage is None:
            self.storage = create_storage_adapter(config.storage.backend, config.storage.directory)

        self.engine = RoutingEngine(
            config=config.routing,
            inference_config=config.inference,
            inference=self.inference,
            metrics_collector=metrics_collector,
            audit_logger=audit_logger
        )
        self.orchestrator = WorkflowOrchestrator(
            build_default_registry(self.inference, config.inference),
            config=config.orchestrator,
            metrics_collector=metrics_collector,
            audit_logger=audit_logger
        )
        self.store = SessionStateStore(self.storage, config.session, metrics_collector, audit_logger)
        self.events = EventChannel(config.events, metrics_collector=metrics_collector)

        self.pipeline = IntakePipeline(
            engine=self.engine,
            store=self.store,
            storage=self.storage,
            identity=IdentityService(self.identity_authority, config.pipeline.identity_timeout_seconds),
            delivery=DeliveryService(self.delivery_adapter or LoggingDeliveryAdapter(), metrics_collector, audit_logger),
            orchestrator=self.orchestrator,
            events=self.events,
            config=config.pipeline,
            storage_config=config.storage
        )
        self.batch_consumer = BatchConsumer(
            pipeline_handler(self.pipeline),
            self.storage,
            config.batch,
            metrics_collector,
            audit_logger
        )

        await self.events.start()
        self.initialized = True

        logger.info(
            "Intake gateway initialized",
            extra={
                "inference_configured": self.inference is not None,
                "storage_backend": config.storage.backend,
                "node_id": config.session.node_id,
                "unavailable_capabilities": self.orchestrator.unavailable_capabilities
            }
        )

    async def shutdown(self) -> None:
        """Flush events and release owned resources."""
        if not self.initialized:
            return
        logger.info("Shutting down intake gateway")

        try:
            if self.events:
                await self.events.stop()
            if self._owned_inference:
                await self._owned_inference.aclose()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")
        finally:
            if self._telemetry_enabled:
                shutdown_telemetry()
            self.initialized = False

    def health(self) -> Dict[str, Any]:
        return {
            "status": "ok" if self.initialized else "starting",
            "version": __version__,
            "inference_configured": self.inference is not None,
            "capabilities": {
                "available": self.orchestrator.available_capabilities if self.orchestrator else [],
                "unavailable": self.orchestrator.unavailable_capabilities if self.orchestrator else {}
            },
            "events": {
                "pending": self.events.pending() if self.events else 0,
                "dropped": self.events.dropped if self.events else 0
            }
        }

    def setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown")
            self._shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def run_server(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Run the HTTP API until interrupted."""
        await self.initialize()
        app: FastAPI = create_app(self)

        final_host = host or self.config.server.host
        final_port = port or self.config.server.port
        logger.info(f"Starting intake gateway on {final_host}:{final_port}")

        self._shutdown_event = asyncio.Event()
        self.setup_signal_handlers()
        server = uvicorn.Server(uvicorn.Config(
            app=app,
            host=final_host,
            port=final_port,
            log_config=None,
            access_log=False
        ))

        try:
            await self._run_with_shutdown(server)
        finally:
            await self.shutdown()

    async def _run_with_shutdown(self, server: uvicorn.Server) -> None:
        server_task = asyncio.create_task(server.serve())
        shutdown_task = asyncio.create_task(self._shutdown_event.wait())

        done, pending = await asyncio.wait([server_task, shutdown_task], return_when=asyncio.FIRST_COMPLETED)
        if shutdown_task in done:
            server.should_exit = True
            await server_task
        else:
            shutdown_task.cancel()


def load_document(path: str) -> Any:
    """Read JSON or YAML from a file, or from stdin when path is '-'."""
    text = sys.stdin.read() if path == "-" else Path(path).read_text()
    if path.endswith((".yaml", ".yml")):
        return yaml.safe_load(text)
    return json.loads(text)


def emit(result: Dict[str, Any], output_format: str) -> None:
    if output_format == "yaml":
        click.echo(yaml.dump(result, default_flow_style=False, indent=2, sort_keys=False))
    else:
        click.echo(json.dumps(result, indent=2))


async def _run(app: IntakeApplication, work):
    await app.initialize()
    try:
        return await work()
    finally:
        await app.shutdown()


# CLI Commands

@click.group()
@click.option('--config', '-c', help='Configuration file path')
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.version_option(__version__, prog_name="intake-gateway")
@click.pass_context
def cli(ctx, config, debug):
    """Intake gateway: message routing, workflows and session state."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    ctx.obj['debug'] = debug

    if debug:
        logging.basicConfig(level=logging.DEBUG)


@cli.command()
@click.option('--host', help='Host to bind to (default from configuration)')
@click.option('--port', type=int, help='Port to bind to (default from configuration)')
@click.pass_context
def serve(ctx, host, port):
    """Start the HTTP API server."""
    try:
        app = IntakeApplication(config_path=ctx.obj.get('config_path'))
        asyncio.run(app.run_server(host=host, port=port))
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Error starting server: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def validate(ctx):
    """Validate the configuration."""
    try:
        config_manager = initialize_config(ctx.obj.get('config_path'))
        config = config_manager.get_config()
        warnings = config_manager.validate_config()

        click.echo("Configuration validation completed successfully!")
        click.echo(f"Configuration file: {config.config_file_path}")
        click.echo(f"Node: {config.session.node_id}")
        click.echo(f"Inference endpoint: {config.inference.endpoint or 'not configured'}")
        click.echo(f"Routes configured: {len(config.routing.routes)}")

        if warnings:
            click.echo("\nWarnings:")
            for warning in warnings:
                click.echo(f"  - {warning}")
        else:
            click.echo("\nNo warnings found.")

    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)


@cli.command('init-config')
@click.option('--force', is_flag=True, help='Overwrite an existing configuration file')
@click.pass_context
def init_config(ctx, force):
    """Write a default configuration file."""
    try:
        path = ConfigurationManager(ctx.obj.get('config_path')).init_config_file(force=force)
        click.echo(f"Default configuration written to: {path}")
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)


@cli.command('export-config')
@click.option('--output', '-o', type=click.Path(), help='Output file path')
@click.pass_context
def export_config(ctx, output):
    """Export the current configuration."""
    try:
        config = initialize_config(ctx.obj.get('config_path')).get_config()
        rendered = yaml.dump(config.model_dump(mode="json"), default_flow_style=False, indent=2)

        if output:
            Path(output).write_text(rendered)
            click.echo(f"Configuration exported to: {output}")
        else:
            click.echo(rendered)

    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument('message_file')
@click.option('--output-format', '-f', type=click.Choice(['json', 'yaml']), default='json', help='Output format')
@click.pass_context
def route(ctx, message_file, output_format):
    """Route the message in MESSAGE_FILE ('-' for stdin) without delivering it."""
    try:
        message = Message.model_validate(load_document(message_file))
        app = IntakeApplication(config_path=ctx.obj.get('config_path'))
        decision = asyncio.run(_run(app, lambda: app.engine.route(message, message_id=message.message_id)))
        emit(decision.model_dump(mode="json"), output_format)
    except Exception as e:
        click.echo(f"Error routing message: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument('message_file')
@click.option('--output-format', '-f', type=click.Choice(['json', 'yaml']), default='json', help='Output format')
@click.pass_context
def process(ctx, message_file, output_format):
    """Run the full intake pipeline on the message in MESSAGE_FILE."""
    try:
        message = Message.model_validate(load_document(message_file))
        app = IntakeApplication(config_path=ctx.obj.get('config_path'))
        result = asyncio.run(_run(app, lambda: app.pipeline.process(message)))
        emit(result.model_dump(mode="json"), output_format)
    except Exception as e:
        click.echo(f"Error processing message: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument('task_type')
@click.option('--context', 'context_file', help='JSON or YAML file with the task context')
@click.option('--mode', type=click.Choice([m.value for m in ExecutionMode]), help='Override execution mode')
@click.option('--output-format', '-f', type=click.Choice(['json', 'yaml']), default='json', help='Output format')
@click.pass_context
def workflow(ctx, task_type, context_file, mode, output_format):
    """Run the workflow template TASK_TYPE."""
    try:
        context = load_document(context_file) if context_file else {}
        task = build_task(task_type, context, ExecutionMode(mode) if mode else None)
        app = IntakeApplication(config_path=ctx.obj.get('config_path'))
        result = asyncio.run(_run(app, lambda: app.orchestrator.execute_task(task)))
        emit(result.model_dump(mode="json"), output_format)
    except Exception as e:
        click.echo(f"Error running workflow: {e}", err=True)
        sys.exit(1)


@cli.command()
def templates():
    """List workflow templates."""
    for name in template_names():
        click.echo(name)


@cli.command()
@click.argument('items_file')
@click.option('--batch-size', '-b', default=10, type=int, help='Messages per batch')
@click.option('--output-format', '-f', type=click.Choice(['json', 'yaml']), default='json', help='Output format')
@click.pass_context
def batch(ctx, items_file, batch_size, output_format):
    """Drain the queue items in ITEMS_FILE through the pipeline."""
    try:
        items: List[QueueItem] = [QueueItem.model_validate(i) for i in load_document(items_file)]
        app = IntakeApplication(config_path=ctx.obj.get('config_path'))

        async def work():
            results = await LocalQueue(items).drain(app.batch_consumer, batch_size)
            aggregate = await app.batch_consumer.load_aggregate()
            return {
                "batches": [r.model_dump(mode="json") for r in results],
                "aggregate": aggregate.model_dump(mode="json")
            }

        emit(asyncio.run(_run(app, work)), output_format)
    except Exception as e:
        click.echo(f"Error processing batch: {e}", err=True)
        sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == '__main__':
    main()
