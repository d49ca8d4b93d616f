# Observer notifications, receivers can't influence the request
#
#   from graphgate.signals import request_finished
#
#   @request_finished.connect
#   def log_request(router, response, **extra):
#       ...
#
from blinker import Namespace

_signals = Namespace()

context_created = _signals.signal("context-created")
request_started = _signals.signal("request-started")
request_finished = _signals.signal("request-finished")
request_failed = _signals.signal("request-failed")
