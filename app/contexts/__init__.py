"""
Bounded Contexts do marketing.

Cada subpacote expoe um Application Service que orquestra os casos de uso
de um contexto. As rotas falam so com ele; repositorios e tipos ficam em
app/services/*.
"""
