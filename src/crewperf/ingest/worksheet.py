import io
from pathlib import Path
from typing import Any, List, Union

import pandas as pd

from crewperf.errors import ValidationError
from crewperf.logging import logger

# Legacy BIFF workbooks need xlrd; openpyxl only reads the zip-based formats
EXCEL_ENGINES = {".xlsx": "openpyxl", ".xlsm": "openpyxl", ".xls": "xlrd"}


def read_worksheet(source: Union[bytes, str, Path], filename: str = "") -> List[List[Any]]:
    """
    Load the first sheet of an uploaded time-clock export as a grid of cells.

    ``source`` is the uploaded bytes or a path. The file type comes from
    ``filename`` (or the path suffix). No header is assumed: the extractor
    locates it, because exports carry a title block above the table.
    """
    if isinstance(source, (str, Path)):
        filename = filename or str(source)
        handle = source
    else:
        handle = io.BytesIO(source)

    suffix = Path(filename).suffix.lower()
    try:
        if suffix in EXCEL_ENGINES:
            df = pd.read_excel(handle, sheet_name=0, header=None, dtype=object, engine=EXCEL_ENGINES[suffix])
        elif suffix == ".csv":
            df = pd.read_csv(handle, header=None, dtype=object, skip_blank_lines=False)
        else:
            raise ValidationError(f"Unsupported worksheet type '{suffix or filename}' (expected .xlsx, .xlsm, .xls or .csv)")
    except ValidationError:
        raise
    except Exception as e:
        logger.error(f"Failed to read worksheet {filename}: {e}")
        raise ValidationError(f"Could not read worksheet '{filename}': {e}") from e

    # NaN -> None so blank cells look the same for both formats
    df = df.astype(object).where(pd.notna(df), None)
    rows = df.values.tolist()
    logger.info(f"Read {len(rows)} rows from {filename}")
    return rows
