from sqlalchemy import Column, String, Integer, Float, Text, DateTime
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone

# Lokale Datenbank des Geräts: Spiegel der Remote-Tabellen/Views
# plus Bookkeeping-Spalten data_sync / origem_offline.
LocalBase = declarative_base()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncableMixin:
    data_sync = Column(Text, nullable=True)  # letzte erfolgreiche Synchronisation
    origem_offline = Column(Integer, default=0)  # 1 = lokal erstellt/geändert, 0 = bestätigt


class Material(SyncableMixin, LocalBase):
    __tablename__ = "material"

    id = Column(Integer, primary_key=True, autoincrement=True)
    data = Column(Text, nullable=False)
    nome = Column(Text, nullable=False)
    categoria = Column(Text, nullable=False)
    preco_compra = Column(Float, nullable=False, default=0)
    preco_venda = Column(Float, nullable=False, default=0)
    criado_por = Column(Text, nullable=False)
    atualizado_por = Column(Text, nullable=False)


class ValeFalse(SyncableMixin, LocalBase):
    __tablename__ = "vale_false"

    id = Column(Integer, primary_key=True, autoincrement=True)
    data = Column(Text, nullable=False)
    status = Column(Integer, nullable=False, default=0)
    nome = Column(Text, nullable=False)
    valor = Column(Float, nullable=False, default=0)
    observacao = Column(Text, nullable=True)
    criado_por = Column(Text, nullable=False)
    atualizado_por = Column(Text, nullable=False)


class PendenciaFalse(SyncableMixin, LocalBase):
    __tablename__ = "pendencia_false"

    id = Column(Integer, primary_key=True, autoincrement=True)
    data = Column(Text, nullable=False)
    status = Column(Integer, nullable=False, default=0)
    nome = Column(Text, nullable=False)
    valor = Column(Float, nullable=False, default=0)
    tipo = Column(Text, nullable=False)
    observacao = Column(Text, nullable=True)
    criado_por = Column(Text, nullable=False)
    atualizado_por = Column(Text, nullable=False)


class Comanda20(SyncableMixin, LocalBase):
    """Letzte 20 Comandas, eine Zeile pro Item (View-Snapshot)."""
    __tablename__ = "comanda_20"

    local_rowid = Column(Integer, primary_key=True, autoincrement=True)
    comanda_id = Column(Integer)
    comanda_data = Column(Text)
    codigo = Column(Text)
    comanda_tipo = Column(Text)
    observacoes = Column(Text)
    comanda_total = Column(Float)
    item_id = Column(Integer)
    item_data = Column(Text)
    material_id = Column(Integer)
    preco_kg = Column(Float)
    kg_total = Column(Float)
    item_valor_total = Column(Float)


class FechamentoMes(SyncableMixin, LocalBase):
    __tablename__ = "fechamento_mes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    data = Column(Text)
    compra = Column(Float)
    despesa = Column(Float)
    venda = Column(Float)
    lucro = Column(Float)
    observacao = Column(Text)
    criado_por = Column(Text)
    atualizado_por = Column(Text)


class RelatorioDiario(LocalBase):
    __tablename__ = "relatorio_diario"

    local_rowid = Column(Integer, primary_key=True, autoincrement=True)
    data = Column(Text)
    compra = Column(Float)
    venda = Column(Float)
    despesa = Column(Float)
    lucro = Column(Float)
    data_sync = Column(Text)


class RelatorioMensal(LocalBase):
    __tablename__ = "relatorio_mensal"

    local_rowid = Column(Integer, primary_key=True, autoincrement=True)
    referencia = Column(Text)  # z.B. "2025-01"
    compra = Column(Float)
    venda = Column(Float)
    despesa = Column(Float)
    lucro = Column(Float)
    data_sync = Column(Text)


class RelatorioAnual(LocalBase):
    __tablename__ = "relatorio_anual"

    local_rowid = Column(Integer, primary_key=True, autoincrement=True)
    referencia = Column(Text)  # z.B. "2025"
    compra = Column(Float)
    venda = Column(Float)
    despesa = Column(Float)
    lucro = Column(Float)
    data_sync = Column(Text)


class CompraPorMaterialDiario(LocalBase):
    __tablename__ = "compra_por_material_diario"

    local_rowid = Column(Integer, primary_key=True, autoincrement=True)
    nome = Column(Text)
    data = Column(Text)
    kg = Column(Float)
    gasto = Column(Float)
    data_sync = Column(Text)


class CompraPorMaterialMes(LocalBase):
    __tablename__ = "compra_por_material_mes"

    local_rowid = Column(Integer, primary_key=True, autoincrement=True)
    nome = Column(Text)
    referencia = Column(Text)
    kg = Column(Float)
    gasto = Column(Float)
    data_sync = Column(Text)


class CompraPorMaterialAnual(LocalBase):
    __tablename__ = "compra_por_material_anual"

    local_rowid = Column(Integer, primary_key=True, autoincrement=True)
    nome = Column(Text)
    referencia = Column(Text)
    kg = Column(Float)
    gasto = Column(Float)
    data_sync = Column(Text)


class VendaPorMaterialDiario(LocalBase):
    __tablename__ = "venda_por_material_diario"

    local_rowid = Column(Integer, primary_key=True, autoincrement=True)
    nome = Column(Text)
    data = Column(Text)
    kg = Column(Float)
    gasto = Column(Float)  # Spaltenname wie im Backend, enthält den Umsatz
    data_sync = Column(Text)


class VendaPorMaterialMes(LocalBase):
    __tablename__ = "venda_por_material_mes"

    local_rowid = Column(Integer, primary_key=True, autoincrement=True)
    nome = Column(Text)
    referencia = Column(Text)
    kg = Column(Float)
    gasto = Column(Float)
    data_sync = Column(Text)


class VendaPorMaterialAnual(LocalBase):
    __tablename__ = "venda_por_material_anual"

    local_rowid = Column(Integer, primary_key=True, autoincrement=True)
    nome = Column(Text)
    referencia = Column(Text)
    kg = Column(Float)
    gasto = Column(Float)
    data_sync = Column(Text)


class Ultimas20(SyncableMixin, LocalBase):
    __tablename__ = "ultimas_20"

    id = Column(Integer, primary_key=True, autoincrement=True)
    data = Column(Text)
    material = Column(Integer)
    comanda = Column(Integer)
    preco_kg = Column(Float)
    kg_total = Column(Float)
    valor_total = Column(Float)
    criado_por = Column(Text)
    atualizado_por = Column(Text)


class Estoque(LocalBase):
    __tablename__ = "estoque"

    local_rowid = Column(Integer, primary_key=True, autoincrement=True)
    material = Column(Text)
    kg_total = Column(Float)
    valor_medio_kg = Column(Float)
    valor_total_gasto = Column(Float)
    data_sync = Column(Text)


class DespesaMes(SyncableMixin, LocalBase):
    __tablename__ = "despesa_mes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    data = Column(Text)
    descricao = Column(Text)
    valor = Column(Float)
    criado_por = Column(Text)
    atualizado_por = Column(Text)


class CalculoFechamento(LocalBase):
    __tablename__ = "calculo_fechamento"

    local_rowid = Column(Integer, primary_key=True, autoincrement=True)
    desde_data = Column(Text)
    ate_data = Column(Text)
    compra = Column(Float)
    despesa = Column(Float)
    venda = Column(Float)
    lucro = Column(Float)
    data_sync = Column(Text)


class ResumoEstoqueFinanceiro(LocalBase):
    """Singleton-Aggregat: höchstens eine Zeile."""
    __tablename__ = "resumo_estoque_financeiro"

    local_rowid = Column(Integer, primary_key=True, autoincrement=True)
    total_kg = Column(Float)
    total_custo = Column(Float)
    total_venda_potencial = Column(Float)
    lucro_potencial = Column(Float)
    updated_at = Column(Text)


class SyncQueueEntry(LocalBase):
    """
    Outbox: noch nicht zugestellte Remote-Mutationen.
    payload ist ein eingefrorener JSON-Snapshot zum Zeitpunkt des Enqueue.
    """
    __tablename__ = "sync_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(Text, nullable=False, index=True)
    operation = Column(Text, nullable=False)  # 'INSERT', 'UPDATE', 'DELETE'
    record_id = Column(Text, nullable=True)
    payload = Column(Text, nullable=False)
    created_at = Column(Text, nullable=False, default=utc_now_iso)
    synced = Column(Integer, nullable=False, default=0, index=True)  # 0 = pendente, 1 = sincronizado
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)


class SyncDeadLetter(LocalBase):
    """Quarantäne für Outbox-Einträge, die nie zugestellt werden können."""
    __tablename__ = "sync_dead_letter"

    id = Column(Integer, primary_key=True, autoincrement=True)
    queue_id = Column(Integer, nullable=False)
    table_name = Column(Text, nullable=False)
    operation = Column(Text, nullable=False)
    record_id = Column(Text, nullable=True)
    payload = Column(Text, nullable=False)
    created_at = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    quarantined_at = Column(Text, nullable=False, default=utc_now_iso)


class AppSetting(LocalBase):
    """Persistenter Key/Value-Store (Remote-Zugangsdaten, letzter Sync, Comanda-Zähler)."""
    __tablename__ = "app_settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


# Lookup für generische Operationen (Pull/Replace, Bookkeeping-Updates)
LOCAL_TABLES = {
    model.__tablename__: model.__table__
    for model in (
        Material, ValeFalse, PendenciaFalse, Comanda20, FechamentoMes,
        RelatorioDiario, RelatorioMensal, RelatorioAnual,
        CompraPorMaterialDiario, CompraPorMaterialMes, CompraPorMaterialAnual,
        VendaPorMaterialDiario, VendaPorMaterialMes, VendaPorMaterialAnual,
        Ultimas20, Estoque, DespesaMes, CalculoFechamento, ResumoEstoqueFinanceiro,
    )
}

# Surrogat-Schlüssel, die das Gerät nie verlassen
LOCAL_ONLY_COLUMNS = {"local_rowid"}
