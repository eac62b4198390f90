# FastAPI dependencies: caller identity and database access.
