"""
Модуль сообщений (RabbitMQ + FastStream).

Содержит:
- broker: владелец соединения, топология, переподключение
- models: wire-модели алертов
- publisher: exchange -> WebSocket -> direct enqueue
- consumer: ручной ack/nack очереди алертов
- worker: отдельный consumer-процесс
"""
