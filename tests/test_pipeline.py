import json

from conftest import FakeChat, FakeEmbedder, collect, make_services
from dataset_agent import pipeline
from dataset_agent.collaborators import FetchResult
from dataset_agent.models import DatasetRequest
from dataset_agent.pipeline import EventChannel, format_sse, host_name, ingest_dataset, run_topic, StreamEvent

SALES_CSV = "category,amount\na,1\nb,2\na,3\nc,4\nb,5\nb,5\n,\n"


def ingest(services, **request):
    return collect(lambda channel: ingest_dataset(DatasetRequest(**request), services, channel))


def names(events):
    return [e for e, _ in events]


def stages(events):
    return [e for e, _ in events if e != "log"]


def test_event_order_with_embedding():
    services = make_services()
    state, events = ingest(services, text=SALES_CSV, embed=True)

    assert stages(events) == ["schema", "vectorized", "insights", "table"]
    assert events[0] == ("log", {"msg": "Parsing pasted data…"})
    assert events[-1] == ("log", {"msg": "Done."})
    first_stage = names(events).index("schema")
    assert set(names(events)[:first_stage]) == {"log"}

    schema = dict(events)["schema"]
    assert schema == {"name": "pasted-data", "url": "(pasted)", "columns": ["category", "amount"], "count": 5}
    assert dict(events)["vectorized"] == {"count": 5}
    assert len(services.vector_index.points) == 5

    assert state.snapshot.columns == ["category", "amount"]
    assert len(state.snapshot.sample) == 5


def test_cleaning_is_reported():
    _, events = ingest(make_services(), text=SALES_CSV)
    logs = [d["msg"] for e, d in events if e == "log"]
    assert "Parsed CSV-ish text: 7 rows." in logs
    assert "Cleaned data: 7 → 5 rows, 2 cols." in logs


def test_insights_fall_back_to_default_chart():
    _, events = ingest(make_services(), text=SALES_CSV)
    insights = dict(events)["insights"]
    assert insights["specs"] == [
        {"title": "Mean amount by category", "type": "bar", "x": "category", "y": "amount", "agg": "mean"}
    ]
    assert len(insights["data"]) == 5
    logs = [d["msg"] for e, d in events if e == "log"]
    assert "Chart planner gave no usable specs; using a default chart." in logs


def test_planner_specs_are_used():
    reply = json.dumps([{"title": "Sum", "type": "pie", "x": "category", "y": "amount", "agg": "sum"}])
    _, events = ingest(make_services(chat=FakeChat(reply)), text=SALES_CSV, sys="Pie please")
    assert dict(events)["insights"]["specs"][0]["type"] == "pie"


def test_missing_vector_index_warns():
    state, events = ingest(make_services(with_index=False), text=SALES_CSV, embed=True)
    assert stages(events) == ["schema", "warn", "insights", "table"]
    assert state is not None


def test_no_embedding_requested():
    _, events = ingest(make_services(), text=SALES_CSV, embed=False)
    assert stages(events) == ["schema", "insights", "table"]


def test_embedding_failures_are_not_fatal():
    services = make_services(embedder=FakeEmbedder(fail=lambda t: "category: a" in t))
    _, events = ingest(services, text=SALES_CSV, embed=True)
    assert dict(events)["vectorized"] == {"count": 3}
    assert events[-1] == ("log", {"msg": "Done."})


def test_table_rows_are_capped():
    text = "n\n" + "\n".join(str(i) for i in range(600))
    state, events = ingest(make_services(), text=text)
    assert dict(events)["schema"]["count"] == 600
    table = dict(events)["table"]["table"]
    assert table["columns"] == ["n"]
    assert len(table["rows"]) == 500
    assert len(state.snapshot.sample) == 600


def test_truncation_is_logged():
    text = "n\n" + "\n".join(str(i) for i in range(20005))
    _, events = ingest(make_services(), text=text)
    logs = [d["msg"] for e, d in events if e == "log"]
    assert "Input was truncated to the first 20000 rows (limit 20000)." in logs
    assert dict(events)["schema"]["count"] == 20000


def test_remote_json():
    body = json.dumps({"meta": {"n": 2}, "items": [{"id": 1, "t": " x "}, {"id": 2, "t": "y"}]}).encode()
    pages = {"https://www.api.example/v1/items": FetchResult(200, "OK", "application/json", body)}
    services = make_services(pages=pages)
    state, events = ingest(services, url="https://www.api.example/v1/items")

    assert events[0] == ("log", {"msg": "Fetching dataset: https://www.api.example/v1/items"})
    assert ("log", {"msg": "Parsed JSON: 2 rows."}) in events
    table = dict(events)["table"]["table"]
    assert table["name"] == "api.example"
    assert table["url"] == "https://www.api.example/v1/items"
    assert table["rows"] == [{"id": 1, "t": "x"}, {"id": 2, "t": "y"}]
    assert state.snapshot.name == "api.example"


def test_remote_feed_by_suffix():
    feed = b"<rss><item><title>A</title><link>https://a</link><pubDate>Mon</pubDate></item></rss>"
    pages = {"https://news.example/feed.rss": FetchResult(200, "OK", "", feed)}
    _, events = ingest(make_services(pages=pages), url="https://news.example/feed.rss", name="news")
    assert ("log", {"msg": "Parsed RSS/XML: 1 items."}) in events
    assert dict(events)["schema"]["name"] == "news"


def test_non_2xx_is_fatal():
    pages = {"https://x.example/data.csv": FetchResult(404, "Not Found", "text/html", b"nope")}
    state, events = ingest(make_services(pages=pages), url="https://x.example/data.csv")
    assert state is None
    assert events == [
        ("log", {"msg": "Fetching dataset: https://x.example/data.csv"}),
        ("error", {"msg": "Fetch failed: 404 Not Found"}),
    ]


def test_network_error_is_fatal():
    state, events = ingest(make_services(), url="https://unreachable.example/")
    assert state is None
    assert events[-1][0] == "error"
    assert "schema" not in names(events)


def test_invalid_pasted_json_is_fatal():
    state, events = ingest(make_services(), text='{"a": ')
    assert state is None
    assert events == [
        ("log", {"msg": "Parsing pasted data…"}),
        ("error", {"msg": "Invalid JSON in pasted text."}),
    ]


def test_exploding_planner_falls_back_to_default_chart():
    class ExplodingChat(FakeChat):
        async def complete(self, system, prompt, temperature=0.2):
            raise RuntimeError("boom")

    state, events = ingest(make_services(chat=ExplodingChat()), text=SALES_CSV, embed=True)
    assert state is not None
    assert stages(events) == ["schema", "vectorized", "insights", "table"]
    assert dict(events)["insights"]["specs"] == [
        {"title": "Mean amount by category", "type": "bar", "x": "category", "y": "amount", "agg": "mean"}
    ]
    logs = [d["msg"] for e, d in events if e == "log"]
    assert "Row ranking unavailable; using the first rows." in logs
    assert events[-1] == ("log", {"msg": "Done."})


def test_unexpected_crash_still_closes_channel(monkeypatch):
    def broken_clean(columns, rows):
        raise RuntimeError("boom")

    monkeypatch.setattr(pipeline, "clean_rows", broken_clean)
    state, events = ingest(make_services(), text=SALES_CSV)
    assert state is None
    assert events[-1] == ("error", {"msg": "boom"})
    assert "schema" not in names(events)


def test_oversized_csv_cell_is_ingested():
    text = 'id,note\n1,"' + "x" * 200000 + '"\n2,ok\n'
    state, events = ingest(make_services(), text=text)
    assert state is not None
    assert dict(events)["schema"]["count"] == 2
    assert events[-1] == ("log", {"msg": "Done."})


def test_channel_close_is_idempotent():
    import asyncio

    async def run():
        channel = EventChannel()
        await channel.send("log", {"msg": "x"})
        channel.close()
        channel.close()
        return [ev.event async for ev in channel]

    assert asyncio.run(run()) == ["log"]


def test_format_sse():
    assert format_sse(StreamEvent("log", {"msg": "é"})) == 'event: log\ndata: {"msg": "é"}\n\n'


def test_host_name():
    assert host_name("https://www.example.com/a") == "example.com"
    assert host_name("not a url") == "source"


def test_topic_mode():
    reply = json.dumps({
        "columns": ["title", "url"],
        "targets": [
            {"url": "https://feeds.example/rss", "format": "rss"},
            {"url": "https://api.example/top.json", "format": "json", "name": "api"},
        ],
    })
    pages = {
        "https://feeds.example/rss": FetchResult(200, "OK", "text/xml", b"<item><title>T</title><link>L</link></item>"),
        "https://api.example/top.json": FetchResult(200, "OK", "application/json", b'{"hits": [{"title": "H", "url": "U", "x": 1}]}'),
    }
    _, events = collect(lambda ch: run_topic("news", make_services(pages=pages, chat=FakeChat(reply)), ch))

    assert stages(events) == ["plan", "table", "table"]
    tables = [d["table"] for e, d in events if e == "table"]
    assert tables[0]["name"] == "feeds.example"
    assert tables[0]["rows"] == [{"title": "T", "url": "L"}]
    assert tables[1]["name"] == "api"
    assert tables[1]["rows"] == [{"title": "H", "url": "U"}]
    assert events[-1] == ("log", {"msg": "Done."})


def test_topic_mode_defaults_and_scrape_errors():
    _, events = collect(lambda ch: run_topic("anything", make_services(chat=FakeChat("no json here")), ch))
    plan = dict(events)["plan"]["plan"]
    assert plan["targets"][0]["name"] == "hacker-news"
    assert plan["columns"] == ["title", "url", "score", "by", "time"]
    table = dict(events)["table"]["table"]
    assert "error" in table["rows"][0]
    assert events[-1] == ("log", {"msg": "Done."})
