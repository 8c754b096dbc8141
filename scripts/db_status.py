import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from sqlalchemy import text
from vibestack.db import TABLES, engine, dialect


def _table_exists(conn, name: str) -> bool:
    if dialect() == 'postgresql':
        return bool(conn.execute(text("SELECT to_regclass(:n)"), {'n': f'public.{name}'}).scalar())
    return bool(
        conn.execute(
            text("SELECT name FROM sqlite_master WHERE type='table' AND name=:n"), {'n': name}
        ).scalar()
    )


def main() -> int:
    print('dialect:', dialect())
    print('url:', engine.url.render_as_string(hide_password=True))
    ok = True
    with engine.begin() as conn:
        try:
            conn.execute(text('SELECT 1'))
            print('db: ok')
        except Exception as e:
            print('db error:', e)
            return 1
        try:
            for name in TABLES:
                present = _table_exists(conn, name)
                if not present:
                    print(f'{name} table: missing')
                    ok = False
                    continue
                rows = conn.execute(text(f'SELECT COUNT(1) FROM {name}')).scalar()
                print(f'{name} table: ok rows={rows}')
            if _table_exists(conn, 'subscribers'):
                for status, n in conn.execute(
                    text('SELECT status, COUNT(1) FROM subscribers GROUP BY status ORDER BY status')
                ):
                    print(f'  subscribers[{status}]: {n}')
        except Exception as e:
            print('introspection error:', e)
            ok = False
    return 0 if ok else 1


if __name__ == '__main__':
    raise SystemExit(main())
