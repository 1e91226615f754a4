from sqlalchemy.orm import Session


def upsert(db: Session, model, key: str, values: dict) -> None:
    """Insert ``values`` or overwrite the row sharing ``values[key]``.

    Uses the dialect's ``INSERT ... ON CONFLICT DO UPDATE`` so concurrent
    writers to the same key cannot lose updates between a read and a write.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        insert = None

    if insert is not None:
        stmt = insert(model).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[key],
            set_={k: v for k, v in values.items() if k != key},
        )
        db.execute(stmt)
        return

    row = db.query(model).filter(getattr(model, key) == values[key]).with_for_update().first()
    if row is None:
        db.add(model(**values))
    else:
        for k, v in values.items():
            setattr(row, k, v)
    db.flush()
