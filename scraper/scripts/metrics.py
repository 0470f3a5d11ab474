#!/usr/bin/env python3
"""
Print simple operational metrics for the ad pipeline.

Usage examples:
  python scripts/metrics.py --db-host 127.0.0.1
  python scripts/metrics.py --sql-conn your-project:your-region:your-instance
"""
import argparse
import os

from advault_scraper.db import sql_connect

DEFAULT_SQL_CONN = os.getenv("DB_SQL_CONN", "your-project:your-region:your-instance")

SECTIONS = [
    ("Job status counts", "SELECT status, COUNT(*) AS count FROM job_tracking GROUP BY status ORDER BY count DESC"),
    (
        "Step status counts",
        """
        SELECT 'submission' AS step, api_call_status AS status, COUNT(*) AS count FROM job_tracking GROUP BY 2
        UNION ALL
        SELECT 'extraction', serp_processing_status, COUNT(*) FROM job_tracking GROUP BY 2
        UNION ALL
        SELECT 'ads', ads_extraction_status, COUNT(*) FROM job_tracking GROUP BY 2
        UNION ALL
        SELECT 'rendering', rendering_status, COUNT(*) FROM job_tracking GROUP BY 2
        ORDER BY 1, 3 DESC
        """,
    ),
    ("Staging status counts", "SELECT status, COUNT(*) AS count FROM staging_serps GROUP BY status ORDER BY count DESC"),
    (
        "Rendering counts",
        "SELECT rendering_type, status, COUNT(*) AS count FROM ad_renderings GROUP BY 1, 2 ORDER BY 1, 3 DESC",
    ),
    (
        "PNG renderings without storage URL",
        "SELECT COUNT(*) AS count FROM ad_renderings WHERE rendering_type = 'png' AND storage_url IS NULL",
    ),
    (
        "Top staging errors",
        """
        SELECT LEFT(error_message, 80) AS error, COUNT(*) AS count
          FROM staging_serps WHERE status = 'error'
         GROUP BY 1 ORDER BY 2 DESC LIMIT 10
        """,
    ),
    (
        "Jobs per day (last 14 days)",
        """
        SELECT started_at::date AS day, COUNT(*) AS jobs,
               SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) AS completed,
               SUM(new_ads_count) AS new_ads
          FROM job_tracking
         WHERE started_at >= CURRENT_DATE - INTERVAL '14 days'
         GROUP BY 1 ORDER BY 1 DESC
        """,
    ),
    ("Top advertisers by ads", "SELECT advertiser_domain, COUNT(*) AS ads FROM ads GROUP BY 1 ORDER BY 2 DESC LIMIT 15"),
]


def run_query(con, sql):
    with con.cursor() as cur:
        cur.execute(sql)
        cols = [d[0] for d in cur.description]
        rows = cur.fetchall()
    return cols, rows


def print_table(title, cols, rows):
    print(f"\n== {title} ==")
    if not rows:
        print("(no rows)")
        return
    widths = [max(len(str(c)), max((len(str(r[i])) for r in rows), default=0)) for i, c in enumerate(cols)]
    fmt = "  " + " | ".join("{:<" + str(w) + "}" for w in widths)
    print(fmt.format(*cols))
    print("  " + "-+-".join("-" * w for w in widths))
    for r in rows:
        print(fmt.format(*[str(x) for x in r]))


def main():
    ap = argparse.ArgumentParser(description="Print ad pipeline metrics from Postgres")
    ap.add_argument("--sql-conn", default=DEFAULT_SQL_CONN, help="Cloud SQL connection name if using sockets")
    ap.add_argument("--db-host", default=os.getenv("DB_HOST"), help="Host for TCP connection (e.g., 127.0.0.1)")
    ap.add_argument("--db-port", type=int)
    args = ap.parse_args()

    con = sql_connect(args.sql_conn, args.db_host, args.db_port)
    con.autocommit = True

    for title, sql in SECTIONS:
        try:
            cols, rows = run_query(con, sql)
            print_table(title, cols, rows)
        except Exception as e:
            print(f"\n== {title} ==\nERROR: {e}")

    con.close()


if __name__ == "__main__":
    main()
