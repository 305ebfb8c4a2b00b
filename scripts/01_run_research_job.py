#!/usr/bin/env python3
"""
端到端运行一个研究任务：检索 → 筛选 → 抽取 → 建图 → 分析

用法:
  python scripts/01_run_research_job.py "P53 signaling"
  python scripts/01_run_research_job.py "MDM2 inhibitors" --max-results 30 --year-from 2015
  python scripts/01_run_research_job.py "TP53 mutation" --include-first 10 --offline-vocabulary
  python scripts/01_run_research_job.py "p53 apoptosis" --strategy llm --export data/p53_graph.json

命令行没有人工筛选环节：默认纳入全部检索结果，或用 --include-first N 只纳入前 N 篇。
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# 项目根目录加入 path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one research job end to end")
    parser.add_argument("topic", help="Research topic / search query")
    parser.add_argument("--owner", default="cli", help="Owner id recorded on the job")
    parser.add_argument("--max-results", type=int, default=None, help="Max candidate articles")
    parser.add_argument("--year-from", type=int, default=None)
    parser.add_argument("--year-to", type=int, default=None)
    parser.add_argument("--include-first", type=int, default=None, help="Include only the first N articles")
    parser.add_argument("--strategy", choices=["rule", "llm"], default=None, help="Override extraction strategy")
    parser.add_argument("--offline-vocabulary", action="store_true", help="Skip MeSH term normalization")
    parser.add_argument("--directed", action="store_true", help="Build a directed graph")
    parser.add_argument("--db", default=None, help="Database URL override")
    parser.add_argument("--export", default=None, help="Write graph + metrics JSON to this path")
    return parser.parse_args()


def _print_job(job) -> None:
    print(f"  job {job.id}  status={job.status.value}  progress={job.progress:.0f}%  "
          f"found={job.articles_found}  processed={job.articles_processed}")


async def _run(args: argparse.Namespace) -> int:
    from config.settings import load_settings
    from litgraph.errors import LitGraphError
    from litgraph.research import JobStatus
    from litgraph.runtime import build_runtime

    settings = load_settings()
    if args.db:
        settings.database.url = args.db
    if args.strategy:
        settings.extraction.strategy = args.strategy
    settings.path.ensure_dirs()
    settings.print_info()

    runtime = build_runtime(settings, offline_vocabulary=args.offline_vocabulary)
    orch = runtime.orchestrator
    try:
        options = {"max_results": args.max_results or settings.search.default_max_results}
        if args.year_from:
            options["year_from"] = args.year_from
        if args.year_to:
            options["year_to"] = args.year_to

        job = await orch.create_job(args.topic, args.owner, options)
        print(f"[1/4] searching: {job.topic}")
        job = await orch.wait_for_job(job.id)
        _print_job(job)
        if job.status is not JobStatus.awaiting_screening:
            print(f"search did not finish: {job.error or job.status.value}")
            return 1

        articles = await orch.list_articles(job.id, args.owner)
        chosen = articles[: args.include_first] if args.include_first else articles
        chosen_ids = {a.id for a in chosen}
        dropped = [a.id for a in articles if a.id not in chosen_ids]
        counts = await orch.update_screening(job.id, args.owner, {
            "included_ids": sorted(chosen_ids),
            "excluded_ids": dropped,
            "exclusion_reasons": {i: "not selected on command line" for i in dropped},
        })
        print(f"[2/4] screening: {counts}")

        task = await orch.analyze_job(job.id, args.owner, {"directed": args.directed})
        print("[3/4] extracting / building / analyzing ...")
        await task
        job = await orch.get_job(job.id, args.owner)
        _print_job(job)
        if job.status is not JobStatus.completed:
            print(f"analysis did not finish: {job.error or job.status.value}")
            return 1
        if not job.graph_id:
            print("no entities were extracted; no graph built")
            return 0

        graph = await orch.get_graph(job.graph_id, args.owner)
        summary = await orch.analyze_graph(graph.id, args.owner, "summary")
        gaps = await orch.analyze_graph(graph.id, args.owner, "gaps")
        print(f"[4/4] graph {graph.id} v{graph.version}: "
              f"{summary['node_count']} nodes, {summary['edge_count']} edges, density={summary['density']}")
        for item in summary["top_nodes"][:5]:
            print(f"    #{item['rank']} {item['label']}  degree={item['score']}")
        for gap in gaps[:5]:
            print(f"    gap[{gap['priority']}] {gap['kind']}: {gap['description']}")

        if args.export:
            out = Path(args.export)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(json.dumps(graph.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
            print(f"graph written to {out}")
        return 0
    except LitGraphError as e:
        print(f"error [{e.code}]: {e.message}")
        return 2
    finally:
        await runtime.shutdown()


def main() -> None:
    sys.exit(asyncio.run(_run(_parse_args())))


if __name__ == "__main__":
    main()
