"""SQLite persistence: connection, schema, migrations, lock and repositories."""
