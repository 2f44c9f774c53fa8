"""
Bounded Context: Campanhas drip

Responsabilidade: CRUD e ciclo de vida de campanhas, preview de segmento,
execucao manual e analytics.

Camadas:
- application.py: Application Service (orquestracao dos casos de uso)
- Repositorio e tipos: app/services/campaigns e app/services/segments
"""
