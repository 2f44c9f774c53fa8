"""
Configurações da aplicação.
Carrega variáveis de ambiente.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Configurações carregadas do .env"""

    # App
    APP_NAME: str = "Mint Vision Marketing"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_KEY: str = ""

    # Redis (locks de execucao de campanha)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Gateway de mensagens (SMS/email)
    # TRANSPORT_MODE: "log" (desenvolvimento, so registra) | "http" (gateway real)
    TRANSPORT_MODE: str = "log"
    TRANSPORT_API_URL: str = "http://localhost:8025"
    TRANSPORT_API_KEY: str = ""
    TRANSPORT_TIMEOUT: float = 15.0
    # Assinatura HMAC-SHA256 dos callbacks do gateway (vazio = sem verificacao)
    TRANSPORT_WEBHOOK_SECRET: str = ""

    # Loja (variaveis de template)
    STORE_NAME: str = "Mint Vision Optique"
    STORE_PHONE: str = "(416) 555-0100"
    STORE_TIMEZONE: str = "America/Toronto"

    # Segredo compartilhado com o scheduler externo (Authorization: Bearer)
    CRON_SECRET: str = ""

    # CORS - origens permitidas (separadas por vírgula)
    CORS_ORIGINS: str = "*"

    @property
    def is_production(self) -> bool:
        """Retorna True se está em produção."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        """Retorna lista de origens CORS permitidas."""
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def transport_http_enabled(self) -> bool:
        """True quando mensagens devem sair pelo gateway HTTP."""
        return self.TRANSPORT_MODE.lower() == "http"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignora variáveis extras do .env


class CampaignsConfig:
    """
    Constantes do motor de campanhas.

    Valores que nao variam por ambiente ficam aqui, fora do .env.
    """

    # TTL do lock por campanha (segundos). Uma execucao nunca deve passar disso.
    RUN_LOCK_TIMEOUT = 600

    # Mensagens disparadas entre renovacoes do TTL do lock
    DISPATCH_LOCK_EXTEND_EVERY = 10

    # Preview de segmento
    PREVIEW_SAMPLE_SIZE = 10

    # Analytics
    ANALYTICS_RECENT_RUNS = 10

    # Leitura paginada da populacao de clientes
    POPULATION_PAGE_SIZE = 1000

    # Pagina das leituras de destinatarios e mensagens. Nao pode passar do
    # max-rows do PostgREST (1000 por padrao).
    READ_PAGE_SIZE = 1000

    # Janela do campo hasWalkinQuoteNoOrder
    WALKIN_QUOTE_WINDOW_DAYS = 90

    # Ator registrado quando o sistema desbloqueia um card
    SYSTEM_ACTOR = "system"


@lru_cache()
def get_settings() -> Settings:
    """Retorna instância cacheada das configurações."""
    return Settings()


settings = get_settings()
