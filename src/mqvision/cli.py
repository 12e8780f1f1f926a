"""Command-line interface for mqvision."""

import argparse
import json
import logging
import sys
from pathlib import Path

from mqvision.config import Config, ConfigError, load_config


def main():
    parser = argparse.ArgumentParser(
        prog="mqvision",
        description="mqvision - Gas meter reading from camera images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mqvision serve -c config.yaml              # Read images from the ZMQ bus
  mqvision serve --image gauge.jpg           # Serve the reading of one image
  mqvision read gauge.jpg                    # Print the artifact as JSON
  mqvision publish gauge.jpg                 # Send an image to the bus
""",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose output"
    )
    parser.add_argument(
        "--config", "-c", type=str, default="config.yaml",
        help="Path to YAML config (default: config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the reading daemon with the HTTP endpoint",
        description="Reads images from the ZMQ bus (or one file) and serves the latest value",
    )
    serve_parser.add_argument(
        "--image", "-i", type=str, default=None,
        help="Process a single image file instead of the bus",
    )
    serve_parser.add_argument(
        "--port", "-p", type=int, default=None,
        help="HTTP port (default: from config)",
    )
    serve_parser.add_argument(
        "--no-server", action="store_true",
        help="Do not start the HTTP endpoint",
    )

    # read command
    read_parser = subparsers.add_parser(
        "read",
        help="Read one image and print the artifact as JSON",
    )
    read_parser.add_argument("image", help="Path to image file")

    # publish command
    publish_parser = subparsers.add_parser(
        "publish",
        help="Publish an image to the ZMQ bus",
    )
    publish_parser.add_argument("image", help="Path to image file")
    publish_parser.add_argument(
        "--bind", "-b", type=str, default="tcp://*:5560",
        help="ZMQ PUB address (default: tcp://*:5560)",
    )
    publish_parser.add_argument(
        "--topic", "-t", type=str, default=None,
        help="Topic (default: from config)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        config = load_config(args.config, required=False)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.command == "serve":
        _cmd_serve(args, config)
    elif args.command == "read":
        _cmd_read(args, config)
    elif args.command == "publish":
        _cmd_publish(args, config)
    else:
        parser.print_help()
        sys.exit(1)


def _build_pipeline(config: Config):
    """Create the clients and the pipeline wired to them."""
    from mqvision.clients import ConciergeClient, GeminiGaugeReader
    from mqvision.process import ReadingPipeline

    if not config.concierge.addr:
        raise ConfigError("concierge.addr is not set")
    if not config.gemini.api_key:
        raise ConfigError("gemini.api_key is not set (or GEMINI_API_KEY)")

    concierge = ConciergeClient(
        config.concierge.addr,
        token=config.concierge.token,
        ttl_minutes=config.concierge.ttl_minutes,
    )
    gemini = GeminiGaugeReader(
        api_key=config.gemini.api_key,
        model=config.gemini.model,
        system_prompt=config.gemini.system_prompt,
        prompt=config.gemini.prompt,
        max_dimension=config.gemini.max_dimension,
    )
    pipeline = ReadingPipeline(
        archive=concierge.post_image,
        extract=gemini.read_gauge,
        queue_size=config.pipeline.queue_size,
        max_inflight=config.pipeline.max_inflight,
        shutdown_grace_sec=config.pipeline.shutdown_grace_sec,
        chunk_size=config.pipeline.chunk_size,
        mime_type=config.pipeline.mime_type,
    )
    return pipeline, concierge, gemini


def _cmd_serve(args, config: Config):
    """Run the daemon until SIGINT/SIGTERM."""
    from mqvision.core import SensorStore
    from mqvision.daemon import MeterDaemon
    from mqvision.process import LatestValueSink
    from mqvision.server import SensorServer
    from mqvision.sources import FileSource, ZMQImageSource

    try:
        pipeline, concierge, gemini = _build_pipeline(config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.image:
        source = FileSource(args.image)
    else:
        source = ZMQImageSource(config.bus.address, topic=config.bus.topic)

    store = SensorStore()
    sink = LatestValueSink(pipeline.queue, store, resolver=gemini.parse_ambiguous_digits)

    server = None
    if not args.no_server:
        port = args.port if args.port is not None else config.server.port
        server = SensorServer(
            store,
            host=config.server.host,
            port=port,
            stats_callback=pipeline.get_stats,
        )

    daemon = MeterDaemon(source, pipeline, sink, server=server)

    print(f"Source: {args.image or config.bus.address}")
    if server is not None:
        print(f"Serving: http://{config.server.host}:{server.port}/sensor")
    print("Press Ctrl+C to stop")

    try:
        daemon.run()
    except IOError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        concierge.close()

    stats = daemon.get_stats()
    print(f"\nSubmitted {stats['image_count']} images in {stats['elapsed_sec']:.1f}s")


def _cmd_read(args, config: Config):
    """Run one broadcast and print the artifact."""
    path = Path(args.image)
    if not path.is_file():
        print(f"Error: Image file not found: {path}", file=sys.stderr)
        sys.exit(1)

    try:
        pipeline, concierge, _ = _build_pipeline(config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        result = pipeline.process(path.open("rb"))
    finally:
        pipeline.shutdown()
        concierge.close()

    if result.artifact is None:
        for outcome in result.outcomes.values():
            if outcome.error is not None:
                print(f"{outcome.name}: {outcome.error}", file=sys.stderr)
        print(f"Error: broadcast {result.broadcast_id} {result.state.value}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result.artifact.to_dict(), indent=2))


def _cmd_publish(args, config: Config):
    """Send one image to the bus."""
    from mqvision.sources import ZMQImagePublisher

    path = Path(args.image)
    if not path.is_file():
        print(f"Error: Image file not found: {path}", file=sys.stderr)
        sys.exit(1)

    topic = args.topic or config.bus.topic
    with ZMQImagePublisher(args.bind, topic=topic) as publisher:
        if not publisher.publish(path.read_bytes()):
            print("Error: image was not sent", file=sys.stderr)
            sys.exit(1)

    print(f"Published {path.name} on {args.bind} (topic: {topic})")


if __name__ == "__main__":
    main()
