"""
Engagement Assistant Application

This is the main entry point for the Engagement Assistant.
It discovers posts worth answering on BlueSky, scores them, drafts
AI-assisted replies in the user's voice and posts the approved ones.

Author: Eric Ness
Version: 6.0
"""

import sys
import argparse
import logging
import signal
from typing import List, Optional

from config import settings
from data.database import DatabaseConnection
from data.memory_store import MemoryStore
from data.models import DiscoveryType, OpportunityFilters, OpportunityStatus
from services.ai_service import GeminiClient
from services.discovery_service import DiscoveryService
from services.knowledge_service import ChromaKnowledgeClient
from services.response_service import ResponseService
from services.scheduler import DiscoveryScheduler
from services.scoring_service import ScoringService
from services.social_service import BlueskySource
from utils.exceptions import EngagementError
from utils.helpers import truncate_text
from utils.logger import get_logger, setup_file_logging

# Set up logging
logger = get_logger(__name__)


class EngagementApp:
    """
    Main application class for the Engagement Assistant.

    Wires the store and the external clients into the discovery and
    response services. Clients are created on first use so commands only
    need the credentials they actually touch.
    """

    def __init__(self, use_memory: bool = False):
        """Initialize the application and its store."""
        settings.validate_settings(require_database=not use_memory)
        logger.debug(f"Configuration: {settings.get_config_summary()}")

        if use_memory:
            logger.info("Using in-memory store; nothing will be persisted")
            self.store = MemoryStore()
        else:
            self.store = DatabaseConnection()
            self.store.connect()
            self.store.create_schema()

        self.source = BlueskySource()
        self._discovery: Optional[DiscoveryService] = None
        self._responses: Optional[ResponseService] = None

    @property
    def discovery(self) -> DiscoveryService:
        if self._discovery is None:
            self._discovery = DiscoveryService(self.store, self.source, ScoringService(),
                                               logger=get_logger("discovery"))
        return self._discovery

    @property
    def responses(self) -> ResponseService:
        if self._responses is None:
            generation = GeminiClient()
            knowledge = ChromaKnowledgeClient() if settings.KNOWLEDGE_ENABLED else None
            self._responses = ResponseService(self.store, generation, knowledge, self.source,
                                              logger=get_logger("responses"))
        return self._responses

    def close(self) -> None:
        if isinstance(self.store, DatabaseConnection):
            self.store.close()


# =============================================================================
# Commands
# =============================================================================

def cmd_discover(app: EngagementApp, args) -> int:
    created = app.discovery.discover(args.account, args.type)
    for opportunity in created:
        print(f"{opportunity.id}  {opportunity.scoring.total:5.1f}  "
              f"{truncate_text(opportunity.text.replace(chr(10), ' '), 80)}")
    logger.info(f"Discovery created {len(created)} opportunities")
    return 0


def cmd_expire(app: EngagementApp, args) -> int:
    count = app.discovery.expire_opportunities()
    print(f"Expired {count} opportunities")
    return 0


def cmd_list(app: EngagementApp, args) -> int:
    statuses = [OpportunityStatus(s) for s in args.status] if args.status else None
    page = app.discovery.get_opportunities(
        args.account, OpportunityFilters(status=statuses, limit=args.limit, offset=args.offset))

    for item in page.opportunities:
        opportunity, author = item.opportunity, item.author
        print(f"{opportunity.id}  [{opportunity.status.value}]  @{author.handle}  "
              f"{ScoringService.explain_score(opportunity.scoring)}")
        print(f"    {truncate_text(opportunity.text.replace(chr(10), ' '), 100)}")
    print(f"Showing {len(page.opportunities)} of {page.total} (offset {page.offset})")
    return 0


def cmd_generate(app: EngagementApp, args) -> int:
    response = app.responses.generate_response(args.opportunity, args.account, args.profile)
    print(f"Draft {response.id} (v{response.version}, {len(response.text)} chars):")
    print(response.text)
    return 0


def cmd_edit(app: EngagementApp, args) -> int:
    response = app.responses.update_response(args.response, args.text)
    print(f"Updated draft {response.id}")
    return 0


def cmd_dismiss(app: EngagementApp, args) -> int:
    if args.response:
        app.responses.dismiss_response(args.response)
        print(f"Dismissed response {args.response}")
    else:
        app.discovery.update_status(args.opportunity, OpportunityStatus.DISMISSED)
        print(f"Dismissed opportunity {args.opportunity}")
    return 0


def cmd_post(app: EngagementApp, args) -> int:
    response = app.responses.post_response(args.response)
    print(f"Posted: {response.platform_post_url}")
    return 0


def cmd_schedule(app: EngagementApp, args) -> int:
    scheduler = DiscoveryScheduler(app.store, app.discovery)
    jobs = scheduler.initialize()
    if args.once:
        scheduler.run_all()
        return 0

    if jobs == 0:
        logger.warning("No enabled discovery schedules; only the expiration sweep will run")

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, stopping scheduler")
        scheduler.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    scheduler.start()
    scheduler.wait()
    return 0


COMMANDS = {
    'discover': cmd_discover,
    'expire': cmd_expire,
    'list': cmd_list,
    'generate': cmd_generate,
    'edit': cmd_edit,
    'dismiss': cmd_dismiss,
    'post': cmd_post,
    'schedule': cmd_schedule,
}


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Engagement Assistant')
    parser.add_argument('--log-file', type=str, default='engagement.log', help='Log file path')
    parser.add_argument('--log-level', type=str, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default='INFO', help='Logging level')
    parser.add_argument('--memory', action='store_true',
                        help='Use an in-memory store instead of the database')

    subparsers = parser.add_subparsers(dest='command', required=True)

    discover = subparsers.add_parser('discover', help='Run discovery for an account')
    discover.add_argument('--account', required=True, help='Account ID')
    discover.add_argument('--type', choices=[t.value for t in DiscoveryType],
                          default=DiscoveryType.REPLIES.value, help='Discovery type')

    subparsers.add_parser('expire', help='Expire stale pending opportunities')

    listing = subparsers.add_parser('list', help='List opportunities for an account')
    listing.add_argument('--account', required=True, help='Account ID')
    listing.add_argument('--status', action='append', choices=[s.value for s in OpportunityStatus],
                         help='Filter by status (repeatable)')
    listing.add_argument('--limit', type=int, default=settings.OPPORTUNITY_PAGE_SIZE)
    listing.add_argument('--offset', type=int, default=0)

    generate = subparsers.add_parser('generate', help='Draft a reply to an opportunity')
    generate.add_argument('--opportunity', required=True, help='Opportunity ID')
    generate.add_argument('--account', required=True, help='Account ID')
    generate.add_argument('--profile', required=True, help='Profile ID')

    edit = subparsers.add_parser('edit', help='Replace the text of a draft')
    edit.add_argument('--response', required=True, help='Response ID')
    edit.add_argument('--text', required=True, help='New reply text')

    dismiss = subparsers.add_parser('dismiss', help='Dismiss a draft or an opportunity')
    target = dismiss.add_mutually_exclusive_group(required=True)
    target.add_argument('--response', help='Response ID')
    target.add_argument('--opportunity', help='Opportunity ID')

    post = subparsers.add_parser('post', help='Post a draft reply')
    post.add_argument('--response', required=True, help='Response ID')

    schedule = subparsers.add_parser('schedule', help='Run scheduled discovery until stopped')
    schedule.add_argument('--once', action='store_true', help='Run every job once and exit')

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    # Parse command line arguments
    args = parse_arguments(argv)

    # Set up logging
    log_level = getattr(logging, args.log_level)
    setup_file_logging(args.log_file, log_level)

    logger.info(f"Starting Engagement Assistant: {args.command}")

    app = None
    try:
        app = EngagementApp(use_memory=args.memory)
        exit_code = COMMANDS[args.command](app, args)

    except EngagementError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        if getattr(e, 'retryable', False):
            print("This error is temporary; try again.", file=sys.stderr)
        exit_code = 1
    except Exception as e:
        logger.error(f"Unhandled exception in Engagement Assistant: {e}", exc_info=True)
        exit_code = 2
    finally:
        if app is not None:
            app.close()

    # Log application end
    logger.info(f"Engagement Assistant finished with exit code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
