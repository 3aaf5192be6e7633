import tempfile, yaml, json, os
from typing import Union, Dict, Any, Optional
from pathlib import Path
from tasknest.recovery import FileOperationError, FatalError, CorruptionError
from tasknest.logs import get_logger

log = get_logger("data.io")

DATA_YAML = 0
DATA_JSON = 1

YAML_SUFFIXES = ('.yml', '.yaml')

def data_type_for(file_path : Union[Path, str]) -> int:
    """Pick the serialization format from a file suffix; JSON unless it looks like YAML."""
    return DATA_YAML if Path(file_path).suffix.lower() in YAML_SUFFIXES else DATA_JSON

def _cleanup(temp_path : Optional[str]):
    if temp_path is not None and os.path.exists(temp_path):
        try:
            os.unlink(temp_path)
            log.debug(f"Cleaned up temporary file: {temp_path}")
        except OSError as cleanup_error:
            log.warning(f"Could not clean up temp file {temp_path}: {cleanup_error}")

def _create_dirs(file_path : Path):
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
    except (OSError, PermissionError) as e:
        error_msg = f"Cannot create directory {file_path.parent}: {e}"
        log.error(error_msg)
        raise FileOperationError(error_msg) from e

def atomic_write_text(file_path : Union[Path, str], text : str, create_dirs : bool = False):
    """
    Write text to a file through a temporary sibling and an atomic rename.

    Readers see either the old content or the new content, never a partial file.
    """
    file_path = Path(file_path)
    temp_path = None

    try:
        if create_dirs:
            _create_dirs(file_path)

        # Temporary file in the target directory so os.replace stays atomic
        with tempfile.NamedTemporaryFile(mode='w', encoding='utf-8', dir=file_path.parent, prefix=f".{file_path.name}.", suffix='.tmp', delete=False) as temp_file:
            temp_path = temp_file.name
            temp_file.write(text)
            temp_file.flush()
            os.fsync(temp_file.fileno())

        os.replace(temp_path, file_path)
        log.debug(f"Successfully saved file: {file_path}")
        return True

    except (IOError, OSError, PermissionError) as e:
        _cleanup(temp_path)
        # RECOVERABLE ERROR: I/O issues
        error_msg = f"I/O error saving file {file_path}: {e}"
        log.error(error_msg)
        raise FileOperationError(error_msg) from e

def serialize(data_type : int, data : Dict[str, Any]) -> str:
    try:
        if data_type == DATA_YAML:
            return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, indent=2, allow_unicode=True)
        elif data_type == DATA_JSON:
            return json.dumps(data, indent=2, ensure_ascii=False)
    except (yaml.YAMLError, TypeError, ValueError) as e:
        # FATAL ERROR: Data cannot be serialized
        error_msg = (f"Data serialization failed. "
                    f"In-memory data may be corrupt or contain non-serializable types: {e}")
        log.critical(error_msg)
        raise FatalError(error_msg) from e
    raise FatalError("Unsupported Data Format")

def atomic_write(data_type : int, file_path : Union[Path, str], data : Dict[str, Any], create_dirs : bool = False):
    """
    Serialize and save data to a YAML or JSON file using atomic updates.
    """
    return atomic_write_text(file_path, serialize(data_type, data), create_dirs=create_dirs)

def read_text(file_path : Union[Path, str]) -> Union[None, str]:
    """
    Read a whole text file.

    Returns:
        The file content, or None if the file doesn't exist
    """
    file_path = Path(file_path)
    if not file_path.exists():
        return None

    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            return f.read()
    except (IOError, OSError, PermissionError, UnicodeDecodeError) as e:
        # I/O errors are recoverable
        raise FileOperationError(f"Failed to read file {file_path}: {e}") from e

def load_structured_file(file_path : Union[Path, str]) -> Union[None, Dict]:
    """
    Load and parse a JSON or YAML file, chosen by suffix.

    Returns:
        Parsed data as dict, or None if file doesn't exist
    """
    file_path = Path(file_path)
    text = read_text(file_path)
    if text is None:
        return None

    try:
        if data_type_for(file_path) == DATA_YAML:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CorruptionError(f"JSON syntax error in {file_path}: {e}") from e
    except yaml.YAMLError as e:
        raise CorruptionError(f"YAML syntax error in {file_path}: {e}") from e

    # Basic sanity check for data corruption
    if not isinstance(data, dict):
        raise CorruptionError(f"File {file_path} contains invalid data structure")

    return data
