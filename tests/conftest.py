"""
Pytest configuration and shared fixtures.

Key fixtures:
- config: SyncConfig with pacing disabled
- postgres: PostgresClient on a throwaway SQLite file (aiosqlite), schema created
- partition: a registered Partition row
- sample_deal: raw source document for LOAN-001

Datastore tests run the real SQLAlchemy Core statements against SQLite, so
the ON CONFLICT upserts, partial unique index and prune deletes are all
exercised. SQLite drops tzinfo on DateTime columns; compare stored
timestamps naively.
"""

import sys
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

# Add src to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

# Load environment variables
from dotenv import load_dotenv

env_file = Path(__file__).parent.parent / '.env'
if env_file.exists():
    load_dotenv(env_file)

from deal_sync.clients.postgres_client import PostgresClient
from deal_sync.config import SyncConfig
from deal_sync.models.sync import Partition
from deal_sync.repository import PartitionRepository


@pytest.fixture
def config(tmp_path) -> SyncConfig:
    """Settings with every delay zeroed and a local SQLite database."""
    return SyncConfig(
        DATABASE_URL=f'sqlite+aiosqlite:///{tmp_path / "sync.db"}',
        SOURCE_BASE_URL='https://source.test/api/forms',
        PAGE_DELAY_SECONDS=0,
        WINDOW_DELAY_SECONDS=0,
        PARTITION_DELAY_SECONDS=0,
        PARTITION_CONCURRENCY=1,
        DEAL_CONCURRENCY=1,
    )


@pytest_asyncio.fixture
async def postgres(config):
    """Connected client with all tables created."""
    client = PostgresClient(config.DATABASE_URL)
    await client.connect()
    await client.create_schema()
    yield client
    await client.close()


@pytest_asyncio.fixture
async def partition(postgres) -> Partition:
    """A registered partition with no prior success."""
    p = Partition(id='broker_1', name='Alpha Mortgages', api_key='key-alpha')
    await PartitionRepository(postgres).save_partition(p)
    return p


def make_borrower(first_name: str, liabilities: int = 0, **extra: Any) -> dict[str, Any]:
    """Raw borrower with `liabilities` numbered liability entries."""
    return {
        'firstName': first_name,
        'lastName': 'Tester',
        'dateOfBirth': '1985-06-15T00:00:00',
        'addresses': [{'streetNumber': '10', 'streetName': 'Main', 'city': 'Toronto', 'provinceOrState': 9}],
        'employmentHistory': {'employerName': 'Acme', 'grossRevenue': '85000', 'isCurrent': True},
        'liabilities': [
            {'typeId': 2, 'lender': f'Bank {i}', 'balance': 1000 * (i + 1), 'payment': '125.50'}
            for i in range(liabilities)
        ],
        'assets': [],
        'properties': [],
        **extra,
    }


def make_deal(loan_code: str = 'LOAN-001', **extra: Any) -> dict[str, Any]:
    """Raw source deal document."""
    return {
        'loanCode': loan_code,
        'agent': '  Jane Agent ',
        'status': 3,
        'dateCreated': '2024-02-10T14:30:00Z',
        'borrowers': [make_borrower('Ann', liabilities=2), make_borrower('Bob')],
        'subjectProperty': {'streetName': 'Oak', 'city': 'Ottawa', 'province': 9, 'purchasePrice': '450000'},
        'mortgageRequest': {
            'lenderName': 'First Lender',
            'approved': None,
            'mortgages': [{'amount': 300000}, {'amount': '50000'}],
            'rate': '5.25',
        },
        'conditions': [{'name': 'Pay stub', 'isSent': True}],
        'lenderConditions': [{'name': 'Appraisal', 'isApproved': 'true'}],
        'notes': [{'text': 'First contact', 'dateCreated': '2024-02-11T09:00:00Z'}],
        **extra,
    }


@pytest.fixture
def sample_deal() -> dict[str, Any]:
    """LOAN-001: two borrowers, borrower 0 with two liabilities."""
    return make_deal()
