# flask-restful surface
#
# Every verb of GraphResource hands (method, entity, payload) to the Router:
#
#   app = Flask(__name__)
#   api = GraphAPI(app, prefix="/graph")
#
#   GET /graph/me/friends?fields=id,name  =>  Router.do_request("me/friends?fields=id,name", "GET")
#
from flask import Flask, request
from flask_restful import Api, Resource
import graphgate
from .graphgate_init import GraphGate
from .json_encoder import GraphJSONProvider
from .router import Router


class GraphResource(Resource):
    """
    Resource serving every graph entity below the api prefix
    """

    router_factory = Router

    def dispatch_graph_request(self, entity: str, method: str):
        query = request.query_string.decode("utf-8")
        raw_entity = f"{entity}?{query}" if query else entity
        payload = None
        if method != "GET":
            payload = request.get_json(silent=True)
            if payload is None and request.form:
                payload = request.form.to_dict()
        graphgate.log.debug(f"{method} {raw_entity}")
        return self.router_factory().do_request(raw_entity, method, payload)

    def get(self, entity):
        return self.dispatch_graph_request(entity, "GET")

    def post(self, entity):
        return self.dispatch_graph_request(entity, "POST")

    def put(self, entity):
        return self.dispatch_graph_request(entity, "PUT")

    def delete(self, entity):
        return self.dispatch_graph_request(entity, "DELETE")


class GraphAPI(Api):
    """
    flask_restful Api exposing the graph on `<prefix>/<path:entity>`
    """

    def __init__(self, app: Flask, prefix: str = "/graph", router_factory=None, **kwargs) -> None:
        GraphGate(app, **kwargs)
        super().__init__(app, prefix=prefix)
        app.json = GraphJSONProvider(app)
        resource = GraphResource
        if router_factory is not None:
            resource = type("GraphResource", (GraphResource,), {"router_factory": staticmethod(router_factory)})
        self.add_resource(resource, "/<path:entity>", endpoint="graph")
        graphgate.log.info(f"Exposing the graph on {prefix}/<path:entity>")
