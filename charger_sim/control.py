from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from .simulator import ChargerSimulator


class StartRequest(BaseModel):
    connector_id: int = Field(1, alias="connectorId")
    id_tag: str = Field("123456", alias="idTag")
    apply_delay: bool = Field(True, alias="applyDelay")

    model_config = ConfigDict(populate_by_name=True)


class DataTransferRequest(BaseModel):
    vendor_id: str = Field(..., alias="vendorId")
    message_id: Optional[str] = Field(None, alias="messageId")
    data: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


def create_control_app(simulator: ChargerSimulator) -> FastAPI:
    """HTTP control surface for a running simulator."""
    app = FastAPI(title="Charger Simulator Control")

    async def remote_call(coro):
        try:
            return await coro
        except Exception as e:
            raise HTTPException(status_code=502, detail=f"{type(e).__name__}: {e}")

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/state")
    async def state():
        sm = simulator.state_machine
        tx = sm.transaction
        return {
            "identity": simulator.identity.identity,
            "state": sm.state.value,
            "transactionId": tx.transaction_id if tx else None,
            "meterWh": tx.accumulated_energy if tx else None,
            "configurationKey": sm.configuration.as_list(),
        }

    @app.post("/status/{connector_id}")
    async def status(connector_id: int, status: str, error_code: str = "NoError"):
        conf = await remote_call(
            simulator.central_system.status_notification(
                {"connectorId": connector_id, "errorCode": error_code, "status": status}
            )
        )
        return {"ok": True, "response": conf}

    @app.post("/authorize")
    async def authorize(id_tag: str = "123456"):
        conf = await remote_call(simulator.central_system.authorize({"idTag": id_tag}))
        return {"ok": True, "response": conf}

    @app.post("/start")
    async def start(req: StartRequest):
        accepted = simulator.start_transaction(req.connector_id, req.id_tag, req.apply_delay)
        return {"ok": accepted, "state": simulator.state_machine.state.value}

    @app.post("/stop")
    async def stop(apply_delay: bool = True):
        accepted = simulator.stop_transaction(apply_delay)
        return {"ok": accepted, "state": simulator.state_machine.state.value}

    @app.post("/data_transfer")
    async def data_transfer(req: DataTransferRequest):
        payload = {"vendorId": req.vendor_id, "messageId": req.message_id, "data": req.data}
        conf = await remote_call(
            simulator.central_system.data_transfer({k: v for k, v in payload.items() if v is not None})
        )
        return {"ok": True, "response": conf}

    return app
