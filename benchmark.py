from sqlalchemy_typedtable import BackendConfig, Column, Record, RollbackGuard, WhereClause, EQ, EMPTY, connect
import argparse
import os
import tempfile
import time
import random
from faker import Faker


random.seed(42)
fake = Faker()
CATEGORIES = list("ABCDEFGHIJK")

class Item(Record):
    __tablename__ = "items"

    id = Column(int, primary_key=True)
    name = Column(str)
    active = Column(bool)
    category = Column(str)
    price = Column(float)
    cost = Column(float)

def generate_items(n):
    for _ in range(n):
        yield Item(
            name=fake.name(),
            active=random.choice([True, False]),
            category=random.choice(CATEGORIES),
            price=round(random.uniform(5, 500), 2),
            cost=round(random.uniform(1, 300), 2),
        )

def generate_random_where():
    clauses = []

    if random.random() < 0.5:
        clauses.append(WhereClause("active", random.choice(["=", "!="]), random.choice([True, False])))

    if random.random() < 0.7:
        clauses.append(EQ("category", random.choice(CATEGORIES)))

    if random.random() < 0.6:
        price_val = round(random.uniform(10, 400), 2)
        clauses.append(WhereClause("price", random.choice([">", "<", "<=", ">="]), price_val))

    if random.random() < 0.3:
        cost_val = round(random.uniform(10, 200), 2)
        clauses.append(WhereClause("cost", random.choice([">", "<", "<=", ">="]), cost_val))

    if not clauses:
        clauses.append(EQ("active", True))

    return clauses

def run_batch(db, batched, fn):
    # One transaction around the whole batch, or one per statement
    if not batched:
        fn()
        return

    with RollbackGuard(db) as guard:
        fn()
        guard.commit()

def inserts(db, table, count, batched):
    insert_start = time.time()
    run_batch(db, batched, lambda: table.insert_all(generate_items(count)))
    insert_duration = time.time() - insert_start
    print(f"Inserted {count} items in {insert_duration:.2f} seconds.")
    return insert_duration

def selects(table, count, fetch_type):
    queries = [generate_random_where() for _ in range(count)]

    query_start = time.time()
    for clauses in queries:
        if fetch_type == "first":
            table.select_first(*clauses)
        elif fetch_type == "count":
            table.count(*clauses)
        else:
            table.select(*clauses)

    query_duration = time.time() - query_start
    print(f"Executed {count} select queries ({fetch_type}) in {query_duration:.2f} seconds.")
    return query_duration

def updates(db, table, random_ids, batched):
    def run():
        for rid in random_ids:
            record = Item(
                name=fake.name(),
                category=random.choice(CATEGORIES),
                active=random.choice([True, False]),
            )
            table.update(record, EQ("id", rid), "name", "category", "active")

    update_start = time.time()
    run_batch(db, batched, run)
    update_duration = time.time() - update_start
    print(f"Executed {len(random_ids)} updates in {update_duration:.2f} seconds.")
    return update_duration

def deletes(db, table, random_ids, batched):
    def run():
        for rid in random_ids:
            table.delete(EQ("id", rid))

    delete_start = time.time()
    run_batch(db, batched, run)
    delete_duration = time.time() - delete_start
    print(f"Deleted {len(random_ids)} items in {delete_duration:.2f} seconds.")
    return delete_duration

def run_benchmark(mode="batched", count=10_000, path=None):
    print(f"Running benchmark: mode={mode}, count={count}")

    if mode not in ("batched", "autocommit"):
        raise ValueError("Invalid --mode. Use 'batched' or 'autocommit'.")
    batched = mode == "batched"

    with tempfile.TemporaryDirectory() as tmp:
        config = BackendConfig.sqlite(path or os.path.join(tmp, "benchmark.db"))

        with connect(config) as db:
            table = db.get_table(Item)
            table.delete(EMPTY)

            elapsed = inserts(db, table, count, batched)
            elapsed += selects(table, 500, fetch_type="all")
            elapsed += selects(table, 500, fetch_type="first")
            elapsed += selects(table, 500, fetch_type="count")

            random_ids = random.sample(range(1, count + 1), min(500, count))
            elapsed += updates(db, table, random_ids, batched)

            random_ids = random.sample(range(1, count + 1), min(500, count))
            elapsed += deletes(db, table, random_ids, batched)

    print(f"Total runtime for {mode}: {elapsed:.2f} seconds.")



if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--mode", choices=["batched", "autocommit"], required=True)
    parser.add_argument("--count", type=int, default=10_000)
    parser.add_argument("--path", help="SQLite file to use instead of a temporary one")
    args = parser.parse_args()
    run_benchmark(args.mode, args.count, args.path)
