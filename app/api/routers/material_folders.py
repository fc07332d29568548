from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps.request_identity import get_request_identity
from app.db.session import get_db
from app.schemas.base import MessageOut
from app.schemas.material import MaterialFolderCreate, MaterialFolderOut, MaterialFolderUpdate
from app.schemas.request_identity import RequestIdentity
from app.services.material_service import (
    build_folder_tree,
    create_folder,
    delete_folder,
    list_folders,
    update_folder,
)

router = APIRouter(prefix="/material-folders", tags=["material-folders"])


@router.get("", response_model=list[MaterialFolderOut])
def list_material_folders(
    flat: int = Query(0),
    db: Session = Depends(get_db),
):
    folders = list_folders(db)
    if flat:
        return folders
    return build_folder_tree(folders)


@router.post("", response_model=MaterialFolderOut, status_code=status.HTTP_201_CREATED)
def create_material_folder(
    payload: MaterialFolderCreate,
    db: Session = Depends(get_db),
    identity: RequestIdentity = Depends(get_request_identity),
):
    return create_folder(db, name=payload.name, parent_id=payload.parent_id, identity=identity)


@router.put("/{folder_id}", response_model=MaterialFolderOut)
def update_material_folder(
    folder_id: int,
    payload: MaterialFolderUpdate,
    db: Session = Depends(get_db),
    identity: RequestIdentity = Depends(get_request_identity),
):
    return update_folder(
        db,
        folder_id,
        name=payload.name,
        parent_id=payload.parent_id,
        identity=identity,
    )


@router.delete("/{folder_id}", response_model=MessageOut)
def delete_material_folder(folder_id: int, db: Session = Depends(get_db)):
    delete_folder(db, folder_id)
    return {"message": "删除成功"}
