import argparse
import json
import logging
import sys

import networkx as nx

from playwright_custom.browser import PlaywrightBrowserProvider

from .config import BrowserConfiguration, BrowserType, CrawlConfiguration
from .errors import ConfigurationError
from .exit_notifier import ExitStatus
from .runner import CrawlRunner
from .strippers import comment_stripper, script_stripper, style_stripper, whitespace_stripper


def build_config(args: argparse.Namespace) -> CrawlConfiguration:
    builder = CrawlConfiguration.builder_for(args.url)
    builder.add_dom_stripper(script_stripper, style_stripper, comment_stripper, whitespace_stripper)
    builder.set_browser_config(
        BrowserConfiguration(browser_type=BrowserType(args.browser), headless=args.headless)
    )
    builder.set_maximum_depth(args.max_depth)
    builder.set_maximum_states(args.max_states)
    builder.set_maximum_run_time(args.max_runtime)
    builder.set_max_crawlers(args.crawlers)
    if args.click_default:
        builder.crawl_rules().click_default_elements()
    # environment (and .env) wins over the command line defaults
    builder.apply_env()
    return builder.build()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Crawl a web application and build its state-flow graph")
    parser.add_argument("--url", required=True, help="Landing URL of the application to crawl")
    parser.add_argument("--headless", action="store_true", help="Run the browsers headless")
    parser.add_argument("--browser", default="chromium", choices=[b.value for b in BrowserType])
    parser.add_argument("--max-depth", type=int, default=2, help="Maximum crawl depth (0 = unlimited)")
    parser.add_argument("--max-states", type=int, default=0, help="Stop after this many states (0 = unlimited)")
    parser.add_argument("--max-runtime", type=float, default=3600, help="Maximum runtime in seconds (0 = unlimited)")
    parser.add_argument("--crawlers", type=int, default=1, help="Number of parallel browsers")
    parser.add_argument("--click-default", action="store_true", help="Click anchors, buttons and submit inputs")
    parser.add_argument("--graphml", help="Write the state-flow graph to this GraphML file")
    parser.add_argument("--json", dest="json_out", help="Write a JSON summary of the session to this file")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = build_config(args)
    except ConfigurationError as ex:
        print(f"Invalid configuration: {ex}", file=sys.stderr)
        return 2

    print(f"Starting crawl of {config.url}")
    session = CrawlRunner(config, PlaywrightBrowserProvider(config)).call()
    graph = session.get_state_flow_graph()
    print(f"Crawl finished ({session.status.value}) in {session.duration:.1f}s")
    print("States:", graph.number_of_states())
    print("Edges:", graph.number_of_edges())

    if args.graphml:
        nx.write_graphml(graph.to_networkx(), args.graphml)
        print("GraphML written to", args.graphml)
    if args.json_out:
        with open(args.json_out, "w", encoding="utf-8") as fp:
            json.dump(session.to_json(), fp, indent=2)
        print("Summary written to", args.json_out)

    return 0 if session.status in (ExitStatus.COMPLETED, ExitStatus.MAX_STATES, ExitStatus.TIMED_OUT) else 1


if __name__ == "__main__":
    sys.exit(main())
