"""
Source Library client - grounds philosopher thoughts and dialogue in corpus text.

Wraps the corpus HTTP API (search, page quotes with citations, book details)
and adds the helpers agents use to put passages into prompts.
"""

import asyncio
import math
import random
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..models.core import SourcePassage
from ..models.gateways import EmbeddingModel
from ..services.retrieval import cosine_similarity
from .config import SourceLibraryConfig
from .logging_config import get_logger

logger = get_logger(__name__)

# Corpus book ids of each philosopher's key works
PHILOSOPHER_BOOKS: Dict[str, List[str]] = {
    'drebbel': ['on-the-fifth-essence'],
    'ficino': ['de-mysteriis', 'theologia-platonica'],
    'boehme': ['aurora'],
    'paracelsus': ['archidoxis'],
    'maier': ['silentium-post-clamores', 'atalanta-fugiens'],
}

KEY_CONCEPTS: List[str] = [
    # Alchemical
    'quintessence', 'fifth essence', 'quinta essentia', "philosopher's stone", 'mercury', 'sulphur', 'salt',
    'transmutation', 'calcination', 'sublimation', 'conjunction', 'fermentation', 'distillation', 'coagulation',
    # Hermetic
    'hermes', 'thoth', 'emerald tablet', 'as above', 'macrocosm', 'microcosm', 'prima materia', 'anima mundi',
    'world soul',
    # Mystical
    'divine', 'spirit', 'soul', 'illumination', 'gnosis', 'sophia', 'wisdom', 'light', 'darkness', 'unity', 'duality',
    'trinity',
    # Philosophical
    'nature', 'reason', 'truth', 'knowledge', 'being', 'essence', 'substance', 'form', 'matter', 'cause', 'principle',
    'element',
    # Kabbalistic
    'sephiroth', 'ein sof', 'tree of life', 'emanation',
]

RANDOM_PAGE_CEILING = 20


class SourceLibraryError(Exception):
    """Custom exception for Source Library errors."""
    pass


class SourceLibraryClient:
    """HTTP client for the Source Library corpus API."""

    def __init__(self, config: SourceLibraryConfig, session: Optional[requests.Session] = None,
                 rng: Optional[random.Random] = None):
        """
        Initialize the Source Library client.

        Args:
            config: SourceLibraryConfig with the API base URL and timeout
            session: Optional requests session (a new one is created if None)
            rng: Random source for the random-passage fallback
        """
        self.config = config
        self.base_url = config.base_url.rstrip('/')
        self.session = session or requests.Session()
        self.rng = rng or random.Random()

        logger.info(f'Initialized Source Library client for {self.base_url}')

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f'{self.base_url}{path}'
        logger.debug(f'GET {url} params={params}')
        try:
            response = self.session.get(url, params=params, timeout=self.config.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise SourceLibraryError(f'Request to {path} failed: {e}')
        except ValueError as e:
            raise SourceLibraryError(f'Invalid JSON from {path}: {e}')

    def search(self,
               query: str,
               book_id: Optional[str] = None,
               search_content: Optional[bool] = None,
               has_translation: bool = False,
               language: Optional[str] = None,
               limit: Optional[int] = None,
               offset: Optional[int] = None) -> Dict[str, Any]:
        """Search books and pages.

        Returns:
            Response with 'results', 'total' and 'query'

        Raises:
            SourceLibraryError: If the request fails
        """
        params: Dict[str, Any] = {'q': query}
        if book_id:
            params['book_id'] = book_id
        if search_content is not None:
            params['search_content'] = str(search_content).lower()
        if has_translation:
            params['has_translation'] = 'true'
        if language:
            params['language'] = language
        if limit:
            params['limit'] = str(limit)
        if offset:
            params['offset'] = str(offset)
        return self._get('/search', params)

    def get_quote(self, book_id: str, page: int, include_original: Optional[bool] = None,
                  include_context: bool = False) -> Dict[str, Any]:
        """Get a page quote with formatted citations.

        Raises:
            SourceLibraryError: If the request fails
        """
        params: Dict[str, Any] = {'page': str(page)}
        if include_original is not None:
            params['include_original'] = str(include_original).lower()
        if include_context:
            params['include_context'] = 'true'
        return self._get(f'/books/{book_id}/quote', params)

    def get_book(self, book_id: str) -> Dict[str, Any]:
        """Get book details, including page counts.

        Raises:
            SourceLibraryError: If the request fails
        """
        return self._get(f'/books/{book_id}')

    @staticmethod
    def _passage_from_quote(quote_data: Dict[str, Any], book_id: str, page: int, fallback_author: str = '') -> SourcePassage:
        quote = quote_data.get('quote') or {}
        citation = quote_data.get('citation') or {}
        return SourcePassage(book_id=quote.get('book_id') or book_id,
                             book_title=quote.get('display_title') or quote.get('book_title', ''),
                             author=quote.get('author') or fallback_author,
                             text=quote.get('translation', ''),
                             page_number=page,
                             citation=citation.get('inline', ''))

    @staticmethod
    def _passage_from_snippet(result: Dict[str, Any]) -> SourcePassage:
        title = result.get('display_title') or result.get('title', '')
        author = result.get('author', '')
        page = result.get('page_number')
        return SourcePassage(book_id=result.get('book_id', ''),
                             book_title=title,
                             author=author,
                             text=result.get('snippet', ''),
                             page_number=page,
                             citation=f'{author}, {title}, p. {page}')

    def search_passages(self,
                        query: str,
                        author_name: Optional[str] = None,
                        book_id: Optional[str] = None,
                        limit: int = 10) -> List[SourcePassage]:
        """Search and return passages, preferring full quotes over snippets.

        Raises:
            SourceLibraryError: If the search itself fails
        """
        data = self.search(query, book_id=book_id, has_translation=True, limit=limit)

        passages = []
        for result in data.get('results', []):
            author = result.get('author', '')
            if author_name and author_name.lower() not in author.lower():
                continue

            title = result.get('display_title') or result.get('title', '')
            if result.get('type') == 'page' and result.get('page_number') and result.get('snippet'):
                try:
                    quote = self.get_quote(result['book_id'], result['page_number'], include_original=True)['quote']
                    passages.append(
                        SourcePassage(book_id=result['book_id'],
                                      book_title=title,
                                      author=author,
                                      text=quote.get('original') or '',
                                      page_number=result['page_number'],
                                      translated_text=quote.get('translation'),
                                      relevance_score=1.0))
                except (SourceLibraryError, KeyError) as e:
                    logger.warning(f"Quote fetch failed for {result['book_id']} p.{result['page_number']}, using snippet: {e}")
                    passages.append(
                        SourcePassage(book_id=result['book_id'],
                                      book_title=title,
                                      author=author,
                                      text=result['snippet'],
                                      page_number=result['page_number'],
                                      translated_text=result['snippet']))
            elif result.get('type') == 'book' and result.get('summary'):
                summary = result['summary']
                passages.append(
                    SourcePassage(book_id=result.get('book_id', ''),
                                  book_title=title,
                                  author=author,
                                  text=summary,
                                  translated_text=summary))

        return passages

    def fetch_passages(self,
                       philosopher_id: str,
                       topic: str,
                       limit: int = 3,
                       book_ids: Optional[Sequence[str]] = None) -> List[SourcePassage]:
        """Passages on a topic from a philosopher's own works.

        Falls back to one random page of a random key work when the topic
        search finds nothing. Failures are logged and yield fewer passages,
        never an exception.

        Args:
            philosopher_id: Philosopher key, used to look up key works
            topic: Search query
            limit: Maximum number of passages
            book_ids: Key works to search (looked up from philosopher_id if None)

        Returns:
            Up to limit passages
        """
        books = list(book_ids) if book_ids is not None else PHILOSOPHER_BOOKS.get(philosopher_id, [])
        if not books:
            return []

        passages: List[SourcePassage] = []
        per_book = math.ceil(limit / len(books)) + 1

        for book_id in books:
            try:
                data = self.search(topic, book_id=book_id, search_content=True, has_translation=True, limit=per_book)
            except SourceLibraryError as e:
                logger.error(f'Error searching book {book_id}: {e}')
                continue

            for result in data.get('results', []):
                if result.get('type') != 'page' or not result.get('snippet') or not result.get('page_number'):
                    continue
                try:
                    quote_data = self.get_quote(result['book_id'], result['page_number'])
                    passages.append(self._passage_from_quote(quote_data, result['book_id'], result['page_number'],
                                                             result.get('author', '')))
                except SourceLibraryError as e:
                    logger.warning(f'Quote fetch failed for {book_id}, using snippet: {e}')
                    passages.append(self._passage_from_snippet(result))

                if len(passages) >= limit:
                    break

            if len(passages) >= limit:
                break

        if not passages:
            random_passage = self._random_passage(books)
            if random_passage:
                passages.append(random_passage)

        return passages[:limit]

    def _random_passage(self, book_ids: Sequence[str]) -> Optional[SourcePassage]:
        book_id = self.rng.choice(list(book_ids))
        try:
            book = self.get_book(book_id)
            page_count = book.get('pages_translated') or book.get('pages_count') or 10
            page = self.rng.randint(1, min(page_count, RANDOM_PAGE_CEILING))
            return self._passage_from_quote(self.get_quote(book_id, page), book_id, page, book.get('author', ''))
        except SourceLibraryError as e:
            logger.error(f'Error getting random passage from {book_id}: {e}')
            return None

    async def passages_for(self,
                           philosopher_id: str,
                           topic: str,
                           limit: int = 3,
                           book_ids: Optional[Sequence[str]] = None) -> List[SourcePassage]:
        """Async wrapper running fetch_passages off the event loop."""
        return await asyncio.to_thread(self.fetch_passages, philosopher_id, topic, limit, book_ids)

    def health_check(self) -> bool:
        try:
            self.search('philosophy', limit=1)
            return True
        except SourceLibraryError as e:
            logger.error(f'Source Library health check failed: {e}')
            return False


def format_passages_for_context(passages: Sequence[SourcePassage], max_length: int = 2000) -> str:
    """Format passages as bracketed citations followed by their text, within max_length.

    The passage that would overflow is truncated with an ellipsis when more
    than 100 characters of room remain, otherwise dropped.
    """
    result = ''
    current_length = 0

    for passage in passages:
        text = passage.display_text
        page_ref = f', p. {passage.page_number}' if passage.page_number else ''
        formatted = f'[{passage.author}, "{passage.book_title}"{page_ref}]\n{text}\n\n'

        if current_length + len(formatted) > max_length:
            remaining = max_length - current_length - 50
            if remaining > 100:
                result += f'[{passage.author}, "{passage.book_title}"]\n{text[:remaining]}...\n'
            break

        result += formatted
        current_length += len(formatted)

    return result.strip()


def extract_key_concepts(text: str) -> List[str]:
    """Known esoteric and philosophical terms that occur in the text."""
    lower_text = text.lower()
    return [term for term in KEY_CONCEPTS if term in lower_text]


async def find_relevant_passages(client: SourceLibraryClient,
                                 embedder: EmbeddingModel,
                                 query: str,
                                 author_name: Optional[str] = None,
                                 book_id: Optional[str] = None,
                                 top_k: int = 10) -> List[SourcePassage]:
    """Keyword search followed by an embedding rerank.

    Returns:
        Up to top_k passages with relevance_score set to cosine similarity,
        or the keyword order when embedding fails
    """
    try:
        candidates = await asyncio.to_thread(client.search_passages, query, author_name, book_id, top_k * 3)
    except SourceLibraryError as e:
        logger.error(f'Passage search failed for {query!r}: {e}')
        return []

    if not candidates:
        return []

    try:
        query_embedding = await embedder.embed(query)
        for passage in candidates:
            passage_embedding = await embedder.embed(passage.display_text[:1000])
            passage.relevance_score = cosine_similarity(query_embedding, passage_embedding)
    except Exception as e:
        logger.error(f'Passage rerank failed for {query!r}, keeping search order: {e}')
        return candidates[:top_k]

    candidates.sort(key=lambda p: p.relevance_score, reverse=True)
    return candidates[:top_k]
