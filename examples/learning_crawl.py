import asyncio

from fetchbrain import enhance, push_data
from fetchbrain.mock import MockKnowledgeService, create_mock_client


class Dataset:
    items: list[dict] = []

    @classmethod
    async def push_data(cls, data) -> None:
        cls.items.append(data)


class Request:
    def __init__(self, url: str, label: str | None = None) -> None:
        self.url = url
        self.label = label


class Context:
    def __init__(self, request: Request) -> None:
        self.request = request

    async def push_data(self, data) -> None:
        await Dataset.push_data(data)


class Crawler:
    """Minimal crawler calling its request handler once per request."""

    def __init__(self, request_handler) -> None:
        self.request_handler = request_handler

    async def run(self, urls: list[str]) -> None:
        for url in urls:
            await self.request_handler(Context(request=Request(url=url)))


async def handler(context) -> None:
    """Pretend to scrape the page, then store the item."""
    await asyncio.sleep(delay=0.1)
    await push_data({"title": f"Product at {context.request.url}"}, Dataset)


async def main() -> None:
    """Crawl the same URLs twice: the second crawl is served by the knowledge service."""
    service = MockKnowledgeService()
    urls = [f"https://shop.example.com/product/{i}" for i in range(3)]

    for attempt in ("first", "second"):
        crawler = enhance(Crawler(request_handler=handler), client=create_mock_client(service))
        await crawler.run(urls)
        print(f"{attempt} crawl: {len(Dataset.items)} items stored, {service.knowledge_size} known")


if __name__ == "__main__":
    asyncio.run(main())
