from .crud_outbox import (
    enqueue,
    list_pending,
    count_pending,
    mark_synced,
    remove,
    complete_entry,
    record_failure,
    quarantine,
    purge_delivered,
)
from .crud_settings import (
    get_remote_settings,
    save_remote_settings,
    clear_remote_settings,
    get_last_sync_at,
    set_last_sync_at,
    get_comanda_prefix,
    set_comanda_prefix,
    peek_comanda_sequence,
    next_comanda_sequence,
    build_comanda_codigo,
)
from .crud_local import (
    record_local_write,
    mark_local_row_synced,
    replace_table_rows,
    enqueue_comanda,
)
