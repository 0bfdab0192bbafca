"""
Search and request steps of the chat workflow.

A search lists up to five results and remembers them for the sender; a
numeric reply then picks one of them and submits the request to Ombi.
"""

from __future__ import annotations

import logging
import re
from typing import Sequence

from xombi.catalog import CatalogClient
from xombi.errors import SelectionError
from xombi.state import MAX_SEARCH_RESULTS, RequestTracker, SearchResultContext, UserStateStore
from xombi.transport import Conversation
from xombi.types import (
    ListableResult,
    MediaKind,
    RequestOutcome,
    WorkflowState,
)

logger = logging.getLogger(__name__)

MOVIE_PREFIX = "movie "
TV_PREFIX = "tv "

NO_RESULTS_MESSAGE = "No results found for the given search"
SELECTION_PROMPT = "Just send me the number of the result you'd like me to get and I'll queue it up!"
ALL_SEASONS_NOTICE = "Please note that this will enqueue ALL seasons for the selected show."

_DIGITS_RE = re.compile(r"^[0-9]+$")


# ============================================================
#  Search
# ============================================================


async def search_movies(
    catalog: CatalogClient,
    states: UserStateStore,
    sender_address: str,
    content: str,
    conversation: Conversation,
) -> None:
    search_term = content[len(MOVIE_PREFIX):].strip()
    logger.info("Movie search for %r on behalf of %s", search_term, sender_address)
    results = await catalog.search_movies(sender_address, search_term)
    await _show_search_results(
        states, sender_address, conversation, results,
        WorkflowState.AWAITING_MOVIE_SELECTION,
    )


async def search_tv(
    catalog: CatalogClient,
    states: UserStateStore,
    sender_address: str,
    content: str,
    conversation: Conversation,
) -> None:
    search_term = content[len(TV_PREFIX):].strip()
    logger.info("TV search for %r on behalf of %s", search_term, sender_address)
    results = await catalog.search_tv(sender_address, search_term)
    await _show_search_results(
        states, sender_address, conversation, results,
        WorkflowState.AWAITING_TV_SELECTION,
        suffixes=[ALL_SEASONS_NOTICE],
    )


def format_search_results(results: Sequence[ListableResult], suffixes: Sequence[str] = ()) -> str:
    lines = [f"Your search returned {len(results)} results:\n"]
    lines.extend(f"{i}. {result.list_text()}" for i, result in enumerate(results, start=1))
    text = "\n".join(lines) + f"\n\n{SELECTION_PROMPT}"
    for suffix in suffixes:
        text += f"\n\n{suffix}"
    return text


async def _show_search_results(
    states: UserStateStore,
    sender_address: str,
    conversation: Conversation,
    results: Sequence[ListableResult],
    end_state: WorkflowState,
    suffixes: Sequence[str] = (),
) -> None:
    results = list(results[:MAX_SEARCH_RESULTS])

    if not results:
        await conversation.send(NO_RESULTS_MESSAGE)
        states.clear(sender_address)
        return

    await conversation.send(format_search_results(results, suffixes))
    states.set(sender_address, end_state, SearchResultContext(search_results=results))


# ============================================================
#  Requests
# ============================================================


def get_selected_search_result(
    states: UserStateStore,
    sender_address: str,
    content: str,
    required_state: WorkflowState,
) -> ListableResult:
    """Resolve a 1-based numeric selection against the stored results.

    Raises:
        SelectionError: With a message fit to show the user.
    """
    selection = content.strip()
    if not _DIGITS_RE.match(selection):
        raise SelectionError(
            "Please send the number of one of the search results, or start a new search."
        )

    state, context = states.get(sender_address)
    if state != required_state or context is None or not context.search_results:
        raise SelectionError("There are no search results to choose from; please search again.")

    results = context.search_results
    index = int(selection) - 1
    if not 0 <= index < len(results):
        raise SelectionError(
            f"Invalid selection {selection}; please pick a number between 1 and {len(results)}."
        )
    return results[index]


async def request_movie(
    catalog: CatalogClient,
    states: UserStateStore,
    sender_address: str,
    content: str,
    conversation: Conversation,
    request_tracker: RequestTracker | None = None,
) -> None:
    movie = get_selected_search_result(
        states, sender_address, content, WorkflowState.AWAITING_MOVIE_SELECTION
    )
    outcome = await catalog.request_movie(sender_address, movie)
    await _finish_request(
        states, sender_address, conversation, request_tracker, movie, MediaKind.MOVIE, outcome,
        already_requested="That movie has already been requested.",
        no_permission="You do not have permission to request a movie.",
    )


async def request_tv(
    catalog: CatalogClient,
    states: UserStateStore,
    sender_address: str,
    content: str,
    conversation: Conversation,
    request_tracker: RequestTracker | None = None,
) -> None:
    show = get_selected_search_result(
        states, sender_address, content, WorkflowState.AWAITING_TV_SELECTION
    )
    outcome = await catalog.request_tv(sender_address, show)
    await _finish_request(
        states, sender_address, conversation, request_tracker, show, MediaKind.TV, outcome,
        already_requested="That TV show has already been requested.",
        no_permission="You do not have permission to request a show.",
    )


async def _finish_request(
    states: UserStateStore,
    sender_address: str,
    conversation: Conversation,
    request_tracker: RequestTracker | None,
    selected: ListableResult,
    media_kind: MediaKind,
    outcome: RequestOutcome,
    *,
    already_requested: str,
    no_permission: str,
) -> None:
    if outcome is RequestOutcome.ALREADY_REQUESTED:
        await conversation.send(already_requested)
        states.clear(sender_address)
        return
    if outcome is RequestOutcome.NO_PERMISSION:
        await conversation.send(no_permission)
        return

    # Track first: the completion webhook can arrive before the reply lands.
    if request_tracker is not None:
        request_tracker.track(selected.id, media_kind, sender_address)

    await conversation.send(f"Your request for '{selected.list_text()}' has been enqueued!")
    states.clear(sender_address)
