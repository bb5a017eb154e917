"""Human-facing sample codes.

Generated codes have the form ``{TYPE}-{YYMMDD}-{NNNN}``: the sample type, the
reception date and a per-type daily sequence read from the sample registry.
The UNIQUE constraint on ``sample.code`` is the final arbiter; the workflow
engine retries generation a bounded number of times when two receptions draw
the same number.
"""

from datetime import date

from radlims.db.repositories.sample import SampleRepository

SEQUENCE_WIDTH = 4


def code_prefix(sample_type: str, on: date) -> str:
    """Prefix shared by all codes of one sample type on one day."""
    return f"{sample_type.upper()}-{on:%y%m%d}-"


def format_code(prefix: str, sequence: int) -> str:
    return f"{prefix}{sequence:0{SEQUENCE_WIDTH}d}"


async def next_sample_code(repo: SampleRepository, sample_type: str, on: date) -> str:
    """Next free code in the daily sequence of sample_type.

    Args:
        repo: Repository bound to the session that will insert the sample
        sample_type: Validated sample type
        on: Reception date

    Returns:
        A code one past the highest sequence already used that day
    """
    prefix = code_prefix(sample_type, on)
    highest = await repo.max_code_sequence(prefix)
    return format_code(prefix, highest + 1)
